"""
Alerts API
Endpoints for managing alert rules and streaming fired alerts.

Endpoints:
    GET    /api/alerts                          → List the caller's rules
    POST   /api/alerts                          → Create alert rule
    GET    /api/alerts/history                  → Fired alert history
    DELETE /api/alerts/history                  → Clear the caller's history
    GET    /api/alerts/stream                   → SSE stream for real-time alerts
    GET    /api/alerts/stats                    → Engine statistics
    POST   /api/alerts/test                     → Dry-run a threat against the caller's rules
    GET    /api/alerts/{id}                     → Get rule by ID
    PUT    /api/alerts/{id}                     → Update rule
    DELETE /api/alerts/{id}                     → Delete rule
    POST   /api/alerts/{id}/enable              → Enable rule
    POST   /api/alerts/{id}/disable             → Disable rule
    POST   /api/alerts/{id}/reset-cooldown      → Clear the cooldown deadline
    POST   /api/alerts/{id}/matches/{threat_id}/notified → Mark a match delivered
"""

import asyncio
import json
import logging
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, ValidationError, model_validator
from typing import Any, Dict, List, Optional

from alerts import (
    get_alert_engine,
    AlertRule,
    AlertConditions,
    AlertType,
    DeliveryMethod,
)
from core import User, Severity, ThreatSource, ThreatCategory, to_threat_record
from .deps import get_current_user, get_stream_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["Alerts"])


# =============================================================================
# Request Models
# =============================================================================

class ConditionsRequest(BaseModel):
    """Trigger conditions; empty lists mean no constraint"""
    type: AlertType = AlertType.ANY
    value: Optional[str] = None
    severity: List[Severity] = []
    sources: List[ThreatSource] = []
    categories: List[ThreatCategory] = []
    countries: List[str] = []
    malware_families: List[str] = Field(default=[], alias="malwareFamilies")
    keywords: List[str] = []

    model_config = {"populate_by_name": True}

    def to_conditions(self) -> AlertConditions:
        return AlertConditions.from_dict(self.model_dump(mode="json"))


class CreateAlertRequest(BaseModel):
    """Request body for creating an alert"""
    name: Optional[str] = None
    title: Optional[str] = None  # dashboard client sends 'title'
    description: Optional[str] = None
    conditions: ConditionsRequest = ConditionsRequest()
    delivery_method: DeliveryMethod = DeliveryMethod.EMAIL
    webhook_url: Optional[str] = None
    is_active: bool = True
    cooldown_minutes: int = Field(default=0, ge=0)

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Critical IPs from AbuseIPDB",
                "conditions": {
                    "type": "IP",
                    "severity": ["Critical"],
                    "sources": ["AbuseIPDB"],
                },
                "cooldown_minutes": 15
            }
        }
    }

    @model_validator(mode="after")
    def require_name(self):
        if not (self.name or self.title):
            raise ValueError("name is required")
        return self


class UpdateAlertRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    conditions: Optional[ConditionsRequest] = None
    delivery_method: Optional[DeliveryMethod] = None
    webhook_url: Optional[str] = None
    is_active: Optional[bool] = None
    cooldown_minutes: Optional[int] = Field(default=None, ge=0)


def _owned_rule(rule_id: str, user: User) -> AlertRule:
    rule = get_alert_engine().get_rule(rule_id)
    if not rule or rule.owner_id != user.id:
        raise HTTPException(404, f"Rule not found: {rule_id}")
    return rule


# =============================================================================
# Rule Management
# =============================================================================

@router.get("")
async def list_rules(user: User = Depends(get_current_user)):
    """Get the caller's alert rules, newest first"""
    engine = get_alert_engine()
    rules = engine.get_rules(owner_id=user.id)

    return {
        "count": len(rules),
        "rules": [r.to_dict() for r in rules]
    }


@router.post("")
async def create_rule(request: CreateAlertRequest, user: User = Depends(get_current_user)):
    """
    Create a new alert rule.

    Types: IP, Domain, URL, Hash, Email, FileHash, Any
    Every list in conditions left empty places no constraint.
    """
    engine = get_alert_engine()

    rule = AlertRule(
        id="",
        owner_id=user.id,
        name=(request.name or request.title).strip(),
        description=request.description,
        conditions=request.conditions.to_conditions(),
        delivery_method=request.delivery_method,
        webhook_url=request.webhook_url,
        is_active=request.is_active,
        cooldown_minutes=request.cooldown_minutes,
    )

    engine.add_rule(rule)
    logger.info("User %s created alert rule %s", user.id, rule.id)

    return {
        "message": "Alert created",
        "rule": rule.to_dict()
    }


# =============================================================================
# Alert History
# =============================================================================

@router.get("/history")
async def get_history(
    limit: int = Query(default=50, le=200),
    user: User = Depends(get_current_user)
):
    """Get the caller's recent fired alerts"""
    engine = get_alert_engine()
    history = engine.get_history(limit, owner_id=user.id)

    return {
        "count": len(history),
        "alerts": [e.to_dict() for e in history]
    }


@router.delete("/history")
async def clear_history(user: User = Depends(get_current_user)):
    """Clear the caller's alert history"""
    engine = get_alert_engine()
    engine.clear_history(owner_id=user.id)

    return {"message": "Alert history cleared"}


# =============================================================================
# SSE Stream
# =============================================================================

async def alert_event_stream(engine, owner_id: str, keepalive: float = 30.0):
    """Yield SSE frames for owner_id's fired alerts until the client goes away"""
    queue = engine.subscribe(owner_id)
    try:
        yield f"data: {json.dumps({'type': 'connected', 'message': 'Alert stream connected'})}\n\n"

        while True:
            try:
                event = await engine.get_event(queue, timeout=keepalive)

                if event:
                    yield f"data: {json.dumps(event.to_dict())}\n\n"
                else:
                    yield ": keepalive\n\n"

            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Alert stream delivery failed")
                await asyncio.sleep(1)
    finally:
        engine.unsubscribe(queue)


@router.get("/stream")
async def stream_alerts(user: User = Depends(get_stream_user)):
    """
    Server-Sent Events stream of the caller's fired alerts.

    Connect via EventSource in browser:
        const es = new EventSource('/api/alerts/stream?token=' + token);
        es.onmessage = (e) => console.log(JSON.parse(e.data));
    """
    return StreamingResponse(
        alert_event_stream(get_alert_engine(), user.id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # Disable nginx buffering
        }
    )


# =============================================================================
# Testing & Management
# =============================================================================

@router.post("/test")
async def test_alerts(
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user)
):
    """
    Check which of the caller's rules a threat would fire.

    Nothing is recorded: no trigger counts, cooldowns or history.
    """
    try:
        threat = to_threat_record(payload)
    except (ValidationError, TypeError) as e:
        raise HTTPException(422, f"Invalid threat: {e}")

    engine = get_alert_engine()
    rules = engine.get_rules(owner_id=user.id)
    matched = engine.test(threat, rules)

    return {
        "input": threat.model_dump(mode="json"),
        "rules_checked": len(rules),
        "triggered_count": len(matched),
        "triggered": matched
    }


@router.get("/stats")
async def get_stats():
    """Get alert engine statistics"""
    engine = get_alert_engine()
    return engine.stats()


@router.get("/{rule_id}")
async def get_rule(rule_id: str, user: User = Depends(get_current_user)):
    """Get a specific alert rule"""
    rule = _owned_rule(rule_id, user)

    return {
        "rule": rule.to_dict(),
        "state": {
            "in_cooldown": rule.in_cooldown(),
            "trigger_count": rule.trigger_count,
            "last_triggered": rule.last_triggered.isoformat() if rule.last_triggered else None
        }
    }


@router.put("/{rule_id}")
async def update_rule(
    rule_id: str,
    request: UpdateAlertRequest,
    user: User = Depends(get_current_user)
):
    """Update rule settings; trigger state is left untouched"""
    _owned_rule(rule_id, user)
    changes = request.model_dump(exclude_unset=True)

    # explicit null on a non-nullable setting means "leave as is"
    for key in ("is_active", "cooldown_minutes"):
        if key in changes and changes[key] is None:
            del changes[key]

    if "conditions" in changes:
        changes["conditions"] = request.conditions.to_conditions() if request.conditions else AlertConditions()
    if "delivery_method" in changes:
        changes["delivery_method"] = request.delivery_method or DeliveryMethod.EMAIL
    if "name" in changes:
        if not (request.name or "").strip():
            raise HTTPException(400, "name cannot be empty")
        changes["name"] = request.name.strip()

    rule = get_alert_engine().update_rule(rule_id, changes)
    if rule is None:
        raise HTTPException(404, f"Rule not found: {rule_id}")

    return {
        "message": "Alert updated",
        "rule": rule.to_dict()
    }


@router.delete("/{rule_id}")
async def delete_rule(rule_id: str, user: User = Depends(get_current_user)):
    """Delete an alert rule"""
    _owned_rule(rule_id, user)
    get_alert_engine().remove_rule(rule_id)

    return {"message": "Alert deleted"}


@router.post("/{rule_id}/enable")
async def enable_rule(rule_id: str, user: User = Depends(get_current_user)):
    _owned_rule(rule_id, user)
    get_alert_engine().set_active(rule_id, True)

    return {"message": f"Rule {rule_id} enabled"}


@router.post("/{rule_id}/disable")
async def disable_rule(rule_id: str, user: User = Depends(get_current_user)):
    _owned_rule(rule_id, user)
    get_alert_engine().set_active(rule_id, False)

    return {"message": f"Rule {rule_id} disabled"}


@router.post("/{rule_id}/reset-cooldown")
async def reset_cooldown(rule_id: str, user: User = Depends(get_current_user)):
    _owned_rule(rule_id, user)
    get_alert_engine().reset_cooldown(rule_id)

    return {"message": f"Cooldown cleared for {rule_id}"}


@router.post("/{rule_id}/matches/{threat_id}/notified")
async def mark_notified(rule_id: str, threat_id: str, user: User = Depends(get_current_user)):
    _owned_rule(rule_id, user)
    rule = get_alert_engine().mark_notified(rule_id, threat_id)

    return {
        "message": f"Match {threat_id} marked notified",
        "recent_matches": [m.to_dict() for m in rule.recent_matches] if rule else []
    }
