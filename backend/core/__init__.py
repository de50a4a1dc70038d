"""
Core Module
Threat records, users and ingestion.

Exports:
    Models: ThreatRecord, User, ThreatType, Severity, ThreatSource,
            ThreatCategory, IngestionResult
    Converters: to_threat_record
    Logging: setup_logging

The ingestion engine lives in core.engine (get_engine, ThreatEngine) and
is imported from there, since it pulls in storage and alerts.
"""

from .models import (
    ThreatRecord,
    User,
    Reference,
    ThreatType,
    Severity,
    ThreatSource,
    ThreatCategory,
    IngestionResult,
    to_threat_record,
    STALE_AFTER_DAYS,
)

from .logger import setup_logging

__all__ = [
    # Models
    "ThreatRecord",
    "User",
    "Reference",
    "ThreatType",
    "Severity",
    "ThreatSource",
    "ThreatCategory",
    "IngestionResult",
    "to_threat_record",
    "STALE_AFTER_DAYS",
    # Logging
    "setup_logging",
]
