"""
ResumeCustomizer Pro - User Agent Parsing

Derives the device fingerprint (browser, OS, device type) from a
User-Agent header. Unknown parts come back as "Unknown"; the device
type defaults to desktop.
"""

import re
from typing import List, Optional, Tuple

from pydantic import BaseModel


UNKNOWN = "Unknown"

# Order matters: Edge and Opera UAs also contain "Chrome", Chrome contains "Safari"
_BROWSER_PATTERNS: List[Tuple[str, str]] = [
    ("Edge", r"Edg(?:e|A|iOS)?/([\d.]+)"),
    ("Opera", r"(?:OPR|Opera)/([\d.]+)"),
    ("Samsung Internet", r"SamsungBrowser/([\d.]+)"),
    ("Firefox", r"(?:Firefox|FxiOS)/([\d.]+)"),
    ("Chrome", r"(?:Chrome|CriOS)/([\d.]+)"),
    ("Safari", r"Version/([\d.]+).*Safari/"),
    ("IE", r"(?:MSIE |Trident/.*rv:)([\d.]+)"),
]

_OS_PATTERNS: List[Tuple[str, str]] = [
    ("Windows", r"Windows NT ([\d.]+)"),
    ("iOS", r"(?:iPhone|iPad|iPod).*?OS ([\d_]+)"),
    ("Android", r"Android ([\d.]+)"),
    ("Chrome OS", r"CrOS \S+ ([\d.]+)"),
    ("Mac OS", r"Mac OS X ([\d_.]+)"),
    ("Linux", r"(Linux)"),
]


class DeviceInfo(BaseModel):
    """Parsed user agent."""
    browser: str = UNKNOWN
    browser_version: Optional[str] = None
    os: str = UNKNOWN
    os_version: Optional[str] = None
    device_type: str = "desktop"

    @property
    def fingerprint(self) -> str:
        """Lowercase browser-os-devicetype key used to recognise known devices."""
        return f"{self.browser}-{self.os}-{self.device_type}".lower()

    @property
    def label(self) -> str:
        return f"{self.browser} on {self.os}"


def _match(patterns: List[Tuple[str, str]], user_agent: str) -> Tuple[str, Optional[str]]:
    for name, pattern in patterns:
        match = re.search(pattern, user_agent)
        if match:
            version = match.group(1)
            if version == name:
                version = None
            elif version:
                version = version.replace("_", ".")
            return name, version
    return UNKNOWN, None


def _device_type(user_agent: str) -> str:
    lowered = user_agent.lower()
    if "ipad" in lowered or "tablet" in lowered or (
        "android" in lowered and "mobile" not in lowered
    ):
        return "tablet"
    if "mobi" in lowered or "iphone" in lowered or "ipod" in lowered:
        return "mobile"
    return "desktop"


def parse_user_agent(user_agent: Optional[str]) -> DeviceInfo:
    """
    Parse a User-Agent header.

    Example:
        >>> info = parse_user_agent("Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        ...     "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36")
        >>> (info.browser, info.os, info.device_type)
        ('Chrome', 'Windows', 'desktop')
    """
    if not user_agent or user_agent == "unknown":
        return DeviceInfo()

    browser, browser_version = _match(_BROWSER_PATTERNS, user_agent)
    os_name, os_version = _match(_OS_PATTERNS, user_agent)

    return DeviceInfo(
        browser=browser,
        browser_version=browser_version,
        os=os_name,
        os_version=os_version,
        device_type=_device_type(user_agent),
    )
