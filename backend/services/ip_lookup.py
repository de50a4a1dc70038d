"""
IP Lookup Service
Enriches an indicator through a third-party lookup (ipinfo.io by default).

Usage:
    from services import get_ip_lookup

    info = get_ip_lookup().lookup("8.8.8.8")
"""

import logging
from typing import Any, Dict, Optional

import requests

from config import get_settings

logger = logging.getLogger(__name__)


class IPLookupError(Exception):
    """Lookup request failed or returned an unusable response"""


class IPLookupService:
    """Thin client over GET {base_url}/{value}/json"""

    def __init__(self, base_url: str = "https://ipinfo.io", token: str = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.session = requests.Session()

    def lookup(self, value: str) -> Dict[str, Any]:
        value = value.strip()
        if not value:
            raise IPLookupError("Empty lookup value")

        params = {"token": self.token} if self.token else None
        url = f"{self.base_url}/{value}/json"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.exceptions.RequestException as e:
            logger.warning("IP lookup for %s failed: %s", value, e)
            raise IPLookupError(str(e)) from e
        except ValueError as e:
            raise IPLookupError(f"Invalid response for {value}") from e


_ip_lookup: Optional[IPLookupService] = None


def get_ip_lookup() -> IPLookupService:
    global _ip_lookup
    if _ip_lookup is None:
        settings = get_settings()
        _ip_lookup = IPLookupService(
            base_url=settings.ip_lookup_url,
            token=settings.ip_lookup_token,
            timeout=settings.ip_lookup_timeout,
        )
    return _ip_lookup
