"""
Configuration
Settings loaded from environment variables (and .env when present).

Keys:
    THREATVIEW_DB_PATH         → SQLite document store path
    THREATVIEW_SECRET_KEY      → JWT signing key
    THREATVIEW_TOKEN_TTL_DAYS  → token lifetime
    THREATVIEW_CORS_ORIGINS    → comma-separated origins
    IP_LOOKUP_URL              → base URL of the IP lookup service
    IP_LOOKUP_TOKEN            → optional API token for the lookup
    IP_LOOKUP_TIMEOUT          → request timeout in seconds
    LOG_LEVEL                  → DEBUG, INFO, WARNING, ERROR
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

_ROOT = Path(__file__).resolve().parent.parent
_ENV_PATH = _ROOT / ".env"


@dataclass
class Settings:
    db_path: str = "data/threatview.db"
    secret_key: str = "change-me"
    token_ttl_days: int = 7
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    ip_lookup_url: str = "https://ipinfo.io"
    ip_lookup_token: Optional[str] = None
    ip_lookup_timeout: float = 10.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("THREATVIEW_CORS_ORIGINS", "*")
        return cls(
            db_path=os.getenv("THREATVIEW_DB_PATH", "data/threatview.db"),
            secret_key=os.getenv("THREATVIEW_SECRET_KEY", "change-me"),
            token_ttl_days=int(os.getenv("THREATVIEW_TOKEN_TTL_DAYS", "7")),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            ip_lookup_url=os.getenv("IP_LOOKUP_URL", "https://ipinfo.io").rstrip("/"),
            ip_lookup_token=os.getenv("IP_LOOKUP_TOKEN") or None,
            ip_lookup_timeout=float(os.getenv("IP_LOOKUP_TIMEOUT", "10")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get singleton settings, loading .env on first use"""
    global _settings
    if _settings is None:
        load_dotenv(_ENV_PATH)
        _settings = Settings.from_env()
    return _settings
