"""
Domain Models
The SINGLE SOURCE OF TRUTH for threat and user formats.

After normalization, the system only sees these types.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, timedelta
from enum import Enum
import uuid


STALE_AFTER_DAYS = 30


# =============================================================================
# Enumerations
# =============================================================================

class ThreatType(str, Enum):
    """Kind of indicator"""
    IP = "IP"
    DOMAIN = "Domain"
    URL = "URL"
    HASH = "Hash"
    EMAIL = "Email"
    FILE_HASH = "FileHash"


class Severity(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    INFO = "Info"


class ThreatSource(str, Enum):
    """Where the indicator came from — tagged at entry, never changes"""
    ALIENVAULT = "AlienVault"
    PHISHTANK = "PhishTank"
    ABUSEIPDB = "AbuseIPDB"
    URLHAUS = "URLhaus"
    MALWAREBAZAAR = "MalwareBazaar"
    MANUAL = "Manual"


class ThreatCategory(str, Enum):
    MALWARE = "Malware"
    PHISHING = "Phishing"
    C2 = "C2"
    SCANNING = "Scanning"
    SPAM = "Spam"
    BOTNET = "Botnet"
    RANSOMWARE = "Ransomware"
    APT = "APT"
    OTHER = "Other"


# =============================================================================
# ThreatRecord — The Core Data Contract
# =============================================================================

class Reference(BaseModel):
    url: str
    title: Optional[str] = None


class ThreatRecord(BaseModel):
    """
    A single indicator of compromise.

    Immutable once ingested, except for last_seen / hit_count which are
    bumped when the same (type, value) is observed again.
    """
    id: str = ""
    source: ThreatSource
    source_id: Optional[str] = None
    type: ThreatType
    value: str = Field(..., min_length=1)
    severity: Severity = Severity.MEDIUM
    confidence: int = Field(default=50, ge=0, le=100)
    malware_family: Optional[str] = None
    category: Optional[ThreatCategory] = None
    tags: List[str] = []
    country: Optional[str] = None
    city: Optional[str] = None
    asn: Optional[str] = None
    asn_name: Optional[str] = None
    date_detected: datetime = Field(default_factory=datetime.now)
    first_seen: datetime = Field(default_factory=datetime.now)
    last_seen: datetime = Field(default_factory=datetime.now)
    is_active: bool = True
    verified: bool = False
    description: Optional[str] = None
    references: List[Reference] = []
    hit_count: int = 1
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator('value', mode='before')
    @classmethod
    def strip_value(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator('country', mode='before')
    @classmethod
    def uppercase_country(cls, v):
        """Country codes are stored uppercase"""
        return v.strip().upper() if isinstance(v, str) and v.strip() else None

    @field_validator('date_detected', 'first_seen', 'last_seen', 'created_at', 'updated_at', mode='before')
    @classmethod
    def parse_timestamp(cls, v):
        """Handle ISO strings with a trailing Z; keep everything naive local time"""
        if isinstance(v, str):
            v = datetime.fromisoformat(v.replace('Z', '+00:00'))
        if isinstance(v, datetime) and v.tzinfo is not None:
            return v.astimezone().replace(tzinfo=None)
        return v

    def ensure_id(self) -> "ThreatRecord":
        if not self.id:
            self.id = f"thr_{uuid.uuid4().hex[:12]}"
        return self

    def mark_as_seen(self, now: Optional[datetime] = None) -> None:
        """Record a re-observation (mutates in place)"""
        now = now or datetime.now()
        self.last_seen = now
        self.updated_at = now
        self.hit_count += 1

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        """Not seen in the last 30 days"""
        now = now or datetime.now()
        return self.last_seen < now - timedelta(days=STALE_AFTER_DAYS)


# =============================================================================
# Users
# =============================================================================

class User(BaseModel):
    id: str = ""
    email: str
    name: str = ""
    password_hash: str = ""
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator('email', mode='before')
    @classmethod
    def lowercase_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    def ensure_id(self) -> "User":
        if not self.id:
            self.id = f"usr_{uuid.uuid4().hex[:12]}"
        return self

    def public(self) -> Dict[str, Any]:
        """Serializable view without the password hash"""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
        }


# =============================================================================
# API Response Models
# =============================================================================

class IngestionResult(BaseModel):
    """Result of threat ingestion"""
    success: bool = True
    count: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0
    alerts_fired: int = 0
    message: str = ""


# =============================================================================
# Converters — External → Internal
# =============================================================================

_FIELD_ALIASES = {
    "sourceId": "source_id",
    "malwareFamily": "malware_family",
    "asnName": "asn_name",
    "dateDetected": "date_detected",
    "firstSeen": "first_seen",
    "lastSeen": "last_seen",
    "isActive": "is_active",
    "hitCount": "hit_count",
}


def to_threat_record(data: Dict[str, Any]) -> ThreatRecord:
    """
    Convert an external payload to ThreatRecord.

    This is the NORMALIZATION POINT. Accepts both snake_case and the
    camelCase keys used by the dashboard client.
    """
    normalized = {_FIELD_ALIASES.get(k, k): v for k, v in data.items()}
    tags = normalized.get("tags")
    if isinstance(tags, str):
        normalized["tags"] = [t.strip() for t in tags.split(",") if t.strip()]
    return ThreatRecord(**normalized)
