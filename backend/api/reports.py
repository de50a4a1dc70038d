"""
Reports API
Report summaries and downloadable exports.

Formats:
    - CSV (default) — Excel/pandas compatible
    - JSON — For programmatic access

Endpoints:
    GET /api/reports/generate      → Build and store a report summary
    GET /api/reports               → Recent reports
    GET /api/reports/export/{id}   → Download report with threat rows
"""

import io
import csv
import json
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from core import User
from core.engine import get_engine
from core.reports import generate_report
from db import get_storage
from .deps import get_current_user

router = APIRouter(prefix="/reports", tags=["Reports"])

THREAT_COLUMNS = [
    "id", "type", "value", "severity", "source", "category", "country",
    "malware_family", "confidence", "hit_count", "date_detected", "last_seen",
]


@router.get("/generate")
async def generate(
    title: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user)
):
    report = generate_report(get_storage(), title)
    return {
        "message": "Report generated",
        "report": report
    }


@router.get("")
async def recent_reports(limit: int = Query(default=20, ge=1, le=20)):
    reports = get_storage().get_reports(limit)
    return {
        "count": len(reports),
        "reports": reports
    }


@router.get("/export/{report_id}")
async def export_report(
    report_id: str,
    format: str = Query(default="csv", description="csv or json"),
    limit: int = Query(default=1000, le=10000)
):
    """
    Export a report.

    Returns:
        CSV or JSON file with the summary and the current threat rows
    """
    report = get_storage().get_report(report_id)
    if not report:
        raise HTTPException(404, f"Report not found: {report_id}")

    threats = get_engine().list_threats(limit=limit)
    rows = [t.model_dump(mode="json") for t in threats]
    filename = f"report_{report_id}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    if format == "json":
        content = json.dumps({**report, "threats": rows}, indent=2)
        return StreamingResponse(
            io.BytesIO(content.encode()),
            media_type="application/json",
            headers={"Content-Disposition": f"attachment; filename={filename}.json"}
        )

    # CSV format: summary block, blank line, threat table
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["title", report["title"]])
    writer.writerow(["created_at", report["created_at"]])
    for key, value in report["summary"].items():
        writer.writerow([key, value])
    writer.writerow([])
    writer.writerow(THREAT_COLUMNS)

    for row in rows:
        writer.writerow([row.get(col) if row.get(col) is not None else "" for col in THREAT_COLUMNS])

    output.seek(0)
    return StreamingResponse(
        io.BytesIO(output.getvalue().encode()),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}.csv"}
    )
