import logging
from typing import List, Dict, Optional, Callable, Any, Tuple
from datetime import datetime, timedelta

import pandas as pd

from .models import ThreatRecord, IngestionResult, STALE_AFTER_DAYS
from alerts import AlertEngine, AlertEvent, get_alert_engine
from db import get_storage

logger = logging.getLogger(__name__)

OnThreatCallback = Callable[[ThreatRecord, bool], None]

TIMELINE_DAYS = 30
TOP_N = 10


class ThreatEngine:
    """
    Ingestion and querying of threat records.

    Every ingested threat is de-duplicated on (type, value), persisted,
    and then handed to the alert engine.
    """

    def __init__(self, storage, alert_engine: AlertEngine):
        self._storage = storage
        self._alerts = alert_engine
        self._on_threat: List[OnThreatCallback] = []
        self._stats = {
            "threats_ingested": 0,
            "threats_created": 0,
            "threats_updated": 0,
            "errors": 0,
            "start_time": datetime.now()
        }

    def ingest(
        self,
        threat: ThreatRecord,
        now: Optional[datetime] = None
    ) -> Tuple[ThreatRecord, bool, List[AlertEvent]]:
        """
        Store a threat, or bump the existing record with the same identity.

        Returns:
            (stored record, created, fired alert events)
        """
        now = now or datetime.now()
        existing = self._storage.find_threat(threat.type.value, threat.value)

        if existing is not None:
            existing.mark_as_seen(now)
            record = self._storage.save_threat(existing)
            created = False
            self._stats["threats_updated"] += 1
        else:
            threat.id = ""
            threat.created_at = threat.updated_at = now
            record = self._storage.save_threat(threat)
            created = True
            self._stats["threats_created"] += 1

        self._stats["threats_ingested"] += 1
        logger.debug("%s threat %s (%s %s)",
                     "Created" if created else "Re-observed",
                     record.id, record.type.value, record.value)

        events = self._alerts.evaluate(record, now)

        for callback in self._on_threat:
            try:
                callback(record, created)
            except Exception:
                logger.exception("Threat callback failed for %s", record.id)

        return record, created, events

    def ingest_batch(self, threats: List[ThreatRecord], rejected: int = 0) -> IngestionResult:
        """
        Ingest threats one by one; a failing item does not stop the batch.

        rejected counts items the caller already failed to parse; they are
        reported as errors alongside ingestion failures.
        """
        if not threats and not rejected:
            return IngestionResult(success=True, count=0, message="No threats")

        created = updated = fired = 0
        errors = rejected
        self._stats["errors"] += rejected
        for threat in threats:
            try:
                _, was_created, events = self.ingest(threat)
            except Exception:
                logger.exception("Failed to ingest %s", threat.value)
                errors += 1
                self._stats["errors"] += 1
                continue
            if was_created:
                created += 1
            else:
                updated += 1
            fired += len(events)

        ingested = created + updated
        return IngestionResult(
            success=errors == 0,
            count=ingested,
            created=created,
            updated=updated,
            errors=errors,
            alerts_fired=fired,
            message=f"Ingested {ingested} threats"
        )

    def mark_seen(self, threat_id: str, now: Optional[datetime] = None) -> Optional[ThreatRecord]:
        threat = self._storage.get_threat(threat_id)
        if threat is None:
            return None
        threat.mark_as_seen(now)
        return self._storage.save_threat(threat)

    def get_threat(self, threat_id: str) -> Optional[ThreatRecord]:
        return self._storage.get_threat(threat_id)

    def list_threats(
        self,
        filters: Dict[str, Any] = None,
        query: str = None,
        is_active: Optional[bool] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[ThreatRecord]:
        return self._storage.get_threats(filters, query, is_active, limit, offset)

    def search(self, value: str) -> List[ThreatRecord]:
        return self._storage.find_threats_by_value(value.strip())

    def delete(self, threat_id: str) -> bool:
        return self._storage.delete_threat(threat_id)

    def on_threat(self, callback: OnThreatCallback) -> None:
        self._on_threat.append(callback)

    # =========================================================================
    # Dashboard Statistics
    # =========================================================================

    def threat_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now()
        df = self._storage.get_threats_df()

        since = pd.Timestamp(now - timedelta(days=TIMELINE_DAYS)).normalize()

        if df.empty:
            return {
                "totalThreats": 0,
                "activeThreats": 0,
                "staleThreats": 0,
                "bySeverity": {},
                "byType": {},
                "bySource": {},
                "byCategory": {},
                "topCountries": {},
                "topMalwareFamilies": {},
                "timeline": _timeline(df, since, now),
            }

        stale_cutoff = pd.Timestamp(now - timedelta(days=STALE_AFTER_DAYS))

        return {
            "totalThreats": int(len(df)),
            "activeThreats": int(df['is_active'].astype(bool).sum()),
            "staleThreats": int((df['last_seen'] < stale_cutoff).sum()),
            "bySeverity": _counts(df['severity']),
            "byType": _counts(df['type']),
            "bySource": _counts(df['source']),
            "byCategory": _counts(df['category']),
            "topCountries": _counts(df['country'], TOP_N),
            "topMalwareFamilies": _counts(df['malware_family'], TOP_N),
            "timeline": _timeline(df, since, now),
        }

    def stats(self) -> Dict[str, Any]:
        uptime = (datetime.now() - self._stats["start_time"]).total_seconds()
        return {
            **self._stats,
            "start_time": self._stats["start_time"].isoformat(),
            "uptime_seconds": round(uptime, 2),
            "storage": self._storage.get_stats(),
        }


def _timeline(df: pd.DataFrame, since: pd.Timestamp, now: datetime) -> List[Dict[str, Any]]:
    """Daily detection counts from since through today, zero-filled"""
    days = pd.date_range(since, pd.Timestamp(now).normalize(), freq='D')

    if df.empty:
        counts = pd.Series(0, index=days)
    else:
        recent = df[df['date_detected'] >= since]
        counts = (
            recent.set_index('date_detected')
            .resample('D')['id']
            .count()
            .reindex(days, fill_value=0)
        )

    return [
        {"date": ts.strftime('%Y-%m-%d'), "count": int(count)}
        for ts, count in counts.items()
    ]


def _counts(series: pd.Series, limit: int = None) -> Dict[str, int]:
    counts = series.dropna().value_counts()
    if limit:
        counts = counts.head(limit)
    return {str(k): int(v) for k, v in counts.items()}


_engine: Optional[ThreatEngine] = None


def get_engine() -> ThreatEngine:
    global _engine
    if _engine is None:
        _engine = ThreatEngine(get_storage(), get_alert_engine())
    return _engine
