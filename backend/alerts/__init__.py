"""
Alert System
Rule-based alerts that fire on newly observed threats.

Structure:
    alerts/
    ├── models.py    → AlertRule, AlertConditions, RecentMatch, AlertEvent
    └── engine.py    → AlertEngine (evaluation + history)

Usage:
    from alerts import get_alert_engine, AlertRule, AlertConditions, AlertType

    engine = get_alert_engine()

    rule = AlertRule(
        id="",
        owner_id=user.id,
        name="Critical IPs",
        conditions=AlertConditions(type=AlertType.IP, severity=["Critical"]),
        cooldown_minutes=15
    )
    engine.add_rule(rule)

    # Evaluate (called when a threat is ingested)
    triggered = engine.evaluate(threat)

    history = engine.get_history(limit=20)
"""

from .models import (
    AlertRule,
    AlertConditions,
    AlertEvent,
    AlertType,
    DeliveryMethod,
    RecentMatch,
    MAX_RECENT_MATCHES,
    is_critical_rule,
)

from .engine import (
    AlertEngine,
    get_alert_engine,
)

__all__ = [
    # Models
    "AlertRule",
    "AlertConditions",
    "AlertEvent",
    "AlertType",
    "DeliveryMethod",
    "RecentMatch",
    "MAX_RECENT_MATCHES",
    "is_critical_rule",
    # Engine
    "AlertEngine",
    "get_alert_engine",
]
