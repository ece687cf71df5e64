"""
Best-effort IP geolocation via ip-api.com.

Lookups never raise: any network error, timeout, malformed response or
explicit failure status yields None so the parent request is unaffected.
"""

import ipaddress
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import requests

from .privacy import UNKNOWN_IP

logger = logging.getLogger(__name__)

DEFAULT_GEOLOCATION_URL = (
    "http://ip-api.com/json/{ip}"
    "?fields=status,message,country,countryCode,city,region,lat,lon,timezone,isp"
)


@dataclass
class GeoLocation:
    country: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timezone: Optional[str] = None
    isp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def row_fields(self) -> Dict[str, Any]:
        """Columns persisted on page_views."""
        return {
            "country": self.country,
            "country_code": self.country_code,
            "city": self.city,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


def should_geolocate(ip: Optional[str]) -> bool:
    """Only public addresses can be located."""
    if not ip or ip == UNKNOWN_IP:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_unspecified
        or address.is_multicast
    )


def _as_float(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class Geolocator:
    """Resolve a raw IP to coarse location attributes."""

    def __init__(self, url_template: str = DEFAULT_GEOLOCATION_URL, timeout: float = 3.0,
                 session: Optional[requests.Session] = None):
        self.url_template = url_template
        self.timeout = timeout
        self.session = session or requests.Session()

    def lookup(self, ip: str) -> Optional[GeoLocation]:
        if not should_geolocate(ip):
            logger.debug(f"Skipping geolocation for non-public address {ip}")
            return None

        url = self.url_template.format(ip=ip)
        try:
            response = self.session.get(url, timeout=self.timeout, headers={"Accept": "application/json"})
            if response.status_code != 200:
                logger.warning(f"Geolocation lookup failed for {ip}: HTTP {response.status_code}")
                return None
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Geolocation lookup error for {ip}: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Geolocation lookup for {ip} returned unexpected payload")
            return None

        if data.get("status") == "fail":
            logger.warning(f"Geolocation API error for {ip}: {data.get('message', 'unknown error')}")
            return None

        return GeoLocation(
            country=data.get("country") or None,
            country_code=data.get("countryCode") or None,
            city=data.get("city") or None,
            region=data.get("region") or None,
            latitude=_as_float(data.get("lat")),
            longitude=_as_float(data.get("lon")),
            timezone=data.get("timezone") or None,
            isp=data.get("isp") or None,
        )
