"""
IP anonymization and hashing.

The raw client IP is only ever used transiently (rate limiting, geolocation).
What gets stored is the anonymized address plus a salted, truncated digest
that serves as a stable visitor identity.
"""

import hashlib
import ipaddress

UNKNOWN_IP = "unknown"
HASH_LENGTH = 16


def anonymize_ip(ip: str) -> str:
    """
    Drop the host part of an address.

    IPv4 keeps the first three octets (``203.0.113.42`` -> ``203.0.113.0``).
    IPv6 keeps the /64 network prefix, in compressed form
    (``2001:db8::1`` -> ``2001:db8::``). Unparseable input passes through
    unchanged.
    """
    if not ip or ip == UNKNOWN_IP:
        return UNKNOWN_IP

    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return ip

    prefix = 24 if address.version == 4 else 64
    return str(ipaddress.ip_network(f"{address}/{prefix}", strict=False).network_address)


def hash_ip(ip: str, salt: str) -> str:
    """Salted SHA-256 of the raw IP, truncated to 16 hex chars."""
    if not ip or ip == UNKNOWN_IP:
        return UNKNOWN_IP
    digest = hashlib.sha256((ip + salt).encode("utf-8")).hexdigest()
    return digest[:HASH_LENGTH]
