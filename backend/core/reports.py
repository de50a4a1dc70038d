"""
Report summaries over the current threat and alert-rule store.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from alerts import is_critical_rule

DEFAULT_TITLE = "Threat Intelligence Report"


def generate_report(storage, title: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Build and persist a report summary"""
    now = now or datetime.now()
    rules = storage.get_alerts()

    report = {
        "id": f"rpt_{uuid.uuid4().hex[:8]}",
        "title": title or DEFAULT_TITLE,
        "summary": {
            "totalThreats": storage.count_threats(),
            "activeThreats": storage.count_threats(is_active=True),
            "totalAlerts": len(rules),
            "criticalAlerts": sum(1 for r in rules if is_critical_rule(r)),
        },
        "created_at": now.isoformat(),
    }
    return storage.save_report(report)
