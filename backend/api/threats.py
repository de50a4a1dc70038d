"""
Threats API
Ingestion, listing and dashboard statistics for threat records.

Endpoints:
    GET    /api/threats             → List threats (filters, text search)
    POST   /api/threats             → Ingest a threat, evaluates alerts
    POST   /api/threats/batch       → Ingest many threats
    GET    /api/threats/stats       → Dashboard statistics
    GET    /api/threats/{id}        → Get threat by ID
    POST   /api/threats/{id}/seen   → Record a re-observation
    DELETE /api/threats/{id}        → Delete threat
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import ValidationError

from core import IngestionResult, User, to_threat_record
from core.engine import get_engine
from .deps import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/threats", tags=["Threats"])


def _parse_threat(payload: Dict[str, Any]):
    try:
        return to_threat_record(payload)
    except (ValidationError, TypeError) as e:
        raise HTTPException(422, f"Invalid threat: {e}")


@router.get("")
async def list_threats(
    type: Optional[str] = Query(default=None),
    severity: Optional[str] = Query(default=None),
    source: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    country: Optional[str] = Query(default=None),
    malware_family: Optional[str] = Query(default=None),
    is_active: Optional[bool] = Query(default=None),
    q: Optional[str] = Query(default=None, description="Free-text search"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0)
):
    engine = get_engine()
    filters = {
        "type": type,
        "severity": severity,
        "source": source,
        "category": category,
        "country": country.upper() if country else None,
        "malware_family": malware_family,
    }
    threats = engine.list_threats(filters, q, is_active, limit, offset)

    return {
        "count": len(threats),
        "threats": [t.model_dump(mode="json") for t in threats]
    }


@router.post("")
async def create_threat(
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user)
):
    """
    Ingest a single threat.

    A threat with the same type and value as a stored one is treated as a
    re-observation: last_seen and hit_count are bumped instead.
    """
    engine = get_engine()
    record, created, events = engine.ingest(_parse_threat(payload))

    return {
        "message": "Threat created" if created else "Threat re-observed",
        "created": created,
        "threat": record.model_dump(mode="json"),
        "alerts": [e.to_dict() for e in events]
    }


@router.post("/batch", response_model=IngestionResult)
async def create_threats(
    payload: List[Dict[str, Any]] = Body(...),
    user: User = Depends(get_current_user)
):
    """Ingest many threats; invalid items are counted as errors, the rest are stored"""
    engine = get_engine()
    threats, rejected = [], 0

    for item in payload:
        try:
            threats.append(to_threat_record(item))
        except (ValidationError, TypeError) as e:
            logger.warning("Rejected threat in batch: %s", e)
            rejected += 1

    return engine.ingest_batch(threats, rejected=rejected)


@router.get("/stats")
async def get_stats():
    engine = get_engine()
    return engine.threat_stats()


@router.get("/{threat_id}")
async def get_threat(threat_id: str):
    engine = get_engine()
    threat = engine.get_threat(threat_id)

    if not threat:
        raise HTTPException(404, f"Threat not found: {threat_id}")

    return threat.model_dump(mode="json")


@router.post("/{threat_id}/seen")
async def mark_seen(threat_id: str, user: User = Depends(get_current_user)):
    engine = get_engine()
    threat = engine.mark_seen(threat_id)

    if not threat:
        raise HTTPException(404, f"Threat not found: {threat_id}")

    return {
        "message": f"Threat {threat_id} marked as seen",
        "threat": threat.model_dump(mode="json")
    }


@router.delete("/{threat_id}")
async def delete_threat(threat_id: str, user: User = Depends(get_current_user)):
    engine = get_engine()

    if not engine.delete(threat_id):
        raise HTTPException(404, f"Threat not found: {threat_id}")

    return {"message": f"Threat {threat_id} deleted"}
