"""
User-agent based bot detection.

BOT_PATTERNS is the single list consumed by the server-side filter and by
TrackerClient's pre-filter.
"""

import re
from typing import Optional, Pattern, Tuple

BOT_SIGNATURES: Tuple[str, ...] = (
    "bot",
    "crawler",
    "spider",
    "scraper",
    "googlebot",
    "bingbot",
    "slurp",
    "duckduckbot",
    "baiduspider",
    "yandexbot",
    "sogou",
    "exabot",
    "facebot",
    "ia_archiver",
)

BOT_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(re.escape(signature), re.IGNORECASE) for signature in BOT_SIGNATURES
)


def is_bot(user_agent: Optional[str]) -> bool:
    """Missing user agents count as bots."""
    if not user_agent:
        return True
    return any(pattern.search(user_agent) for pattern in BOT_PATTERNS)
