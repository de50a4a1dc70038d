"""
IoC Search API

Endpoints:
    GET /api/ioc/search?value=<ioc>  → Local matches + external lookup
"""

from fastapi import APIRouter, HTTPException, Query

from core.engine import get_engine
from services import IPLookupError, get_ip_lookup

router = APIRouter(prefix="/ioc", tags=["IoC"])


@router.get("/search")
def search_ioc(value: str = Query(default="")):
    value = value.strip()
    if not value:
        raise HTTPException(400, "IOC value is required")

    matches = get_engine().search(value)

    try:
        result = get_ip_lookup().lookup(value)
    except IPLookupError as e:
        raise HTTPException(502, f"IOC lookup failed: {e}")

    return {
        "input": value,
        "known": len(matches) > 0,
        "matches": [t.model_dump(mode="json") for t in matches],
        "result": result,
    }
