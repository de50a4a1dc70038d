"""
Alert Models
Data structures for alert rules, their match history, and fired events.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any
from enum import Enum
import uuid

from core.models import ThreatRecord, Severity

MAX_RECENT_MATCHES = 10


class AlertType(str, Enum):
    """Indicator type a rule watches; ANY disables the check"""
    IP = "IP"
    DOMAIN = "Domain"
    URL = "URL"
    HASH = "Hash"
    EMAIL = "Email"
    FILE_HASH = "FileHash"
    ANY = "Any"


class DeliveryMethod(str, Enum):
    EMAIL = "email"
    WEBHOOK = "webhook"
    BOTH = "both"


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


def _parse(ts: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(ts) if ts else None


def _value(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v


@dataclass
class AlertConditions:
    """
    Trigger conditions of a rule.

    Every list left empty means "no constraint" on that dimension,
    as does an unset value.
    """
    type: AlertType = AlertType.ANY
    value: Optional[str] = None
    severity: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    countries: List[str] = field(default_factory=list)
    malware_families: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.countries = [c.upper() for c in self.countries]

    def matches(self, threat: ThreatRecord) -> bool:
        if self.type != AlertType.ANY and self.type.value != _value(threat.type):
            return False

        if self.value and self.value != threat.value:
            return False

        if self.severity and _value(threat.severity) not in self.severity:
            return False

        if self.sources and _value(threat.source) not in self.sources:
            return False

        if self.categories and _value(threat.category) not in self.categories:
            return False

        if self.countries and threat.country not in self.countries:
            return False

        if self.malware_families and (
            not threat.malware_family or threat.malware_family not in self.malware_families
        ):
            return False

        if self.keywords:
            haystack = f"{threat.description or ''} {' '.join(threat.tags)} {threat.value}".lower()
            if not any(kw.lower() in haystack for kw in self.keywords):
                return False

        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "value": self.value,
            "severity": list(self.severity),
            "sources": list(self.sources),
            "categories": list(self.categories),
            "countries": list(self.countries),
            "malware_families": list(self.malware_families),
            "keywords": list(self.keywords),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AlertConditions":
        data = data or {}
        return cls(
            type=AlertType(data.get("type") or AlertType.ANY.value),
            value=data.get("value") or None,
            severity=list(data.get("severity") or []),
            sources=list(data.get("sources") or []),
            categories=list(data.get("categories") or []),
            countries=list(data.get("countries") or []),
            malware_families=list(data.get("malware_families") or data.get("malwareFamilies") or []),
            keywords=list(data.get("keywords") or []),
        )


@dataclass
class RecentMatch:
    threat_id: str
    matched_at: datetime
    notified: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threat_id": self.threat_id,
            "matched_at": self.matched_at.isoformat(),
            "notified": self.notified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecentMatch":
        return cls(
            threat_id=data["threat_id"],
            matched_at=datetime.fromisoformat(data["matched_at"]),
            notified=bool(data.get("notified", False)),
        )


@dataclass
class AlertRule:
    """
    User-defined alert rule.

    Example:
        "Alert me on any Critical IP reported by AbuseIPDB"
    """
    id: str
    owner_id: str
    name: str
    conditions: AlertConditions = field(default_factory=AlertConditions)
    description: Optional[str] = None
    delivery_method: DeliveryMethod = DeliveryMethod.EMAIL
    webhook_url: Optional[str] = None
    is_active: bool = True
    cooldown_minutes: int = 0
    next_trigger_allowed: Optional[datetime] = None
    last_triggered: Optional[datetime] = None
    trigger_count: int = 0
    recent_matches: List[RecentMatch] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not self.id:
            self.id = f"alert_{uuid.uuid4().hex[:8]}"

    def in_cooldown(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now()
        return self.next_trigger_allowed is not None and self.next_trigger_allowed > now

    def should_trigger(self, threat: ThreatRecord, now: Optional[datetime] = None) -> bool:
        """Check both gates (active, cooldown) and then every condition"""
        if not self.is_active:
            return False
        if self.in_cooldown(now):
            return False
        return self.conditions.matches(threat)

    def record_trigger(self, threat_id: str, now: Optional[datetime] = None) -> "AlertRule":
        """Record that the rule fired for threat_id (mutates in place)"""
        now = now or datetime.now()
        self.last_triggered = now
        self.trigger_count += 1

        self.recent_matches.insert(0, RecentMatch(threat_id=threat_id, matched_at=now))
        del self.recent_matches[MAX_RECENT_MATCHES:]

        if self.cooldown_minutes > 0:
            self.next_trigger_allowed = now + timedelta(minutes=self.cooldown_minutes)

        self.updated_at = now
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "conditions": self.conditions.to_dict(),
            "delivery_method": self.delivery_method.value,
            "webhook_url": self.webhook_url,
            "is_active": self.is_active,
            "cooldown_minutes": self.cooldown_minutes,
            "next_trigger_allowed": _iso(self.next_trigger_allowed),
            "last_triggered": _iso(self.last_triggered),
            "trigger_count": self.trigger_count,
            "recent_matches": [m.to_dict() for m in self.recent_matches],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertRule":
        return cls(
            id=data.get("id", ""),
            owner_id=data["owner_id"],
            name=data["name"],
            description=data.get("description"),
            conditions=AlertConditions.from_dict(data.get("conditions")),
            delivery_method=DeliveryMethod(data.get("delivery_method") or DeliveryMethod.EMAIL.value),
            webhook_url=data.get("webhook_url"),
            is_active=data.get("is_active", True),
            cooldown_minutes=int(data.get("cooldown_minutes") or 0),
            next_trigger_allowed=_parse(data.get("next_trigger_allowed")),
            last_triggered=_parse(data.get("last_triggered")),
            trigger_count=int(data.get("trigger_count") or 0),
            recent_matches=[RecentMatch.from_dict(m) for m in data.get("recent_matches") or []],
            created_at=_parse(data.get("created_at")) or datetime.now(),
            updated_at=_parse(data.get("updated_at")) or datetime.now(),
        )


@dataclass
class AlertEvent:
    """
    A fired alert.

    This is what gets sent to the frontend stream and kept in history.
    """
    id: str
    rule_id: str
    rule_name: str
    owner_id: str
    threat_id: str
    threat_type: str
    threat_value: str
    severity: str
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not self.id:
            self.id = f"evt_{uuid.uuid4().hex[:8]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "owner_id": self.owner_id,
            "threat_id": self.threat_id,
            "threat_type": self.threat_type,
            "threat_value": self.threat_value,
            "severity": self.severity,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_match(cls, rule: AlertRule, threat: ThreatRecord, now: Optional[datetime] = None) -> "AlertEvent":
        """Create event from a rule that fired on threat"""
        severity = _value(threat.severity)
        threat_type = _value(threat.type)
        message = f"{rule.name}: {severity} {threat_type} {threat.value}"
        if threat.malware_family:
            message += f" ({threat.malware_family})"

        return cls(
            id="",
            rule_id=rule.id,
            rule_name=rule.name,
            owner_id=rule.owner_id,
            threat_id=threat.id,
            threat_type=threat_type,
            threat_value=threat.value,
            severity=severity,
            message=message,
            timestamp=now or datetime.now(),
        )


def is_critical_rule(rule: AlertRule) -> bool:
    return Severity.CRITICAL.value in rule.conditions.severity
