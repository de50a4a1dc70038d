"""
Shared pytest fixtures.

The autouse fixture points every singleton (settings, storage, engines,
IP lookup) at a fresh temp database so tests never touch data/threatview.db.
"""

from datetime import datetime

import pytest

import config
import db.sqlite as storage_mod
import alerts.engine as alert_engine_mod
import core.engine as threat_engine_mod
import services.ip_lookup as ip_lookup_mod
from core import ThreatRecord


@pytest.fixture(autouse=True)
def _isolate_storage(tmp_path):
    settings = config.Settings(
        db_path=str(tmp_path / "threatview.db"),
        secret_key="test-secret-key-0123456789abcdef0123",
    )
    old = (
        config._settings,
        storage_mod._storage,
        alert_engine_mod._alert_engine,
        threat_engine_mod._engine,
        ip_lookup_mod._ip_lookup,
    )

    config._settings = settings
    storage_mod._storage = storage_mod.SQLiteStorage(settings.db_path)
    alert_engine_mod._alert_engine = None
    threat_engine_mod._engine = None
    ip_lookup_mod._ip_lookup = None

    yield

    (
        config._settings,
        storage_mod._storage,
        alert_engine_mod._alert_engine,
        threat_engine_mod._engine,
        ip_lookup_mod._ip_lookup,
    ) = old


@pytest.fixture
def storage():
    return storage_mod.get_storage()


@pytest.fixture
def now():
    return datetime(2024, 3, 1, 12, 0, 0)


def _make_threat(**overrides) -> ThreatRecord:
    data = {
        "source": "AbuseIPDB",
        "type": "IP",
        "value": "185.220.101.4",
        "severity": "Critical",
        "category": "C2",
        "country": "DE",
        "malware_family": "Emotet",
        "description": "Botnet controller observed in spam campaign",
        "tags": ["botnet", "Emotet"],
    }
    data.update(overrides)
    return ThreatRecord(**data)


@pytest.fixture
def make_threat():
    return _make_threat


@pytest.fixture
def threat():
    return _make_threat(id="thr_test0001")
