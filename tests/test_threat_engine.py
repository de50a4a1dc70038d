"""
Tests for ThreatEngine ingestion, querying and dashboard statistics.
"""

from datetime import timedelta

import pytest

from alerts import AlertRule, AlertConditions
from core import to_threat_record
from core.engine import get_engine


@pytest.fixture
def engine():
    return get_engine()


class TestIngest:
    def test_new_threat_gets_id(self, engine, make_threat, now):
        record, created, events = engine.ingest(make_threat(), now)

        assert created is True
        assert record.id.startswith("thr_")
        assert record.hit_count == 1
        assert events == []
        assert engine.get_threat(record.id).value == "185.220.101.4"

    def test_reobservation_bumps_existing(self, engine, make_threat, now):
        first, _, _ = engine.ingest(make_threat(), now)
        later = now + timedelta(hours=2)

        second, created, _ = engine.ingest(make_threat(severity="Low"), later)

        assert created is False
        assert second.id == first.id
        assert second.hit_count == 2
        assert second.last_seen == later
        assert second.severity.value == "Critical"
        assert len(engine.list_threats()) == 1

    def test_same_value_different_type_is_distinct(self, engine, make_threat, now):
        engine.ingest(make_threat(type="IP", value="example.com"), now)
        _, created, _ = engine.ingest(make_threat(type="Domain", value="example.com"), now)

        assert created is True
        assert len(engine.search("example.com")) == 2

    def test_ingest_fires_alerts(self, engine, storage, make_threat, now):
        rule = storage.save_alert(AlertRule(
            id="", owner_id="usr_1", name="emotet",
            conditions=AlertConditions(keywords=["emotet"]),
        ))

        record, _, events = engine.ingest(make_threat(), now)

        assert [e.rule_id for e in events] == [rule.id]
        assert storage.get_alert(rule.id).recent_matches[0].threat_id == record.id

    def test_batch(self, engine, make_threat):
        result = engine.ingest_batch([
            make_threat(value="1.1.1.1"),
            make_threat(value="2.2.2.2"),
            make_threat(value="1.1.1.1"),
        ])

        assert result.success
        assert result.count == 3
        assert result.created == 2
        assert result.updated == 1

    def test_empty_batch(self, engine):
        assert engine.ingest_batch([]).count == 0

    def test_batch_counts_rejected_items(self, engine, make_threat):
        result = engine.ingest_batch([make_threat()], rejected=2)

        assert not result.success
        assert result.count == 1
        assert result.errors == 2
        assert engine.stats()["errors"] == 2


class TestQueries:
    def test_filters_and_text_search(self, engine, make_threat, now):
        engine.ingest(make_threat(value="1.1.1.1", severity="High", country="us"), now)
        engine.ingest(make_threat(value="phish.example", type="Domain", category="Phishing",
                                  malware_family=None, tags=["paypal"], description="Fake login"), now)

        assert [t.value for t in engine.list_threats({"country": "US"})] == ["1.1.1.1"]
        assert [t.value for t in engine.list_threats({"type": "Domain"})] == ["phish.example"]
        assert [t.value for t in engine.list_threats(query="PAYPAL")] == ["phish.example"]
        assert len(engine.list_threats({"severity": "Info"})) == 0

    def test_mark_seen(self, engine, make_threat, now):
        record, _, _ = engine.ingest(make_threat(), now)
        bumped = engine.mark_seen(record.id)

        assert bumped.hit_count == 2
        assert engine.mark_seen("thr_missing") is None


class TestThreatRecord:
    def test_is_stale(self, make_threat, now):
        t = make_threat(last_seen=now - timedelta(days=31))
        assert t.is_stale(now)
        assert not make_threat(last_seen=now - timedelta(days=29)).is_stale(now)

    def test_camel_case_payload(self):
        t = to_threat_record({
            "source": "URLhaus",
            "type": "URL",
            "value": " http://bad.example/x ",
            "malwareFamily": "QakBot",
            "tags": "loader, qakbot",
            "lastSeen": "2024-03-01T10:00:00Z",
        })

        assert t.value == "http://bad.example/x"
        assert t.malware_family == "QakBot"
        assert t.tags == ["loader", "qakbot"]
        assert t.last_seen.tzinfo is None


class TestStats:
    def test_empty(self, engine, now):
        stats = engine.threat_stats(now)
        assert stats["totalThreats"] == 0
        assert len(stats["timeline"]) == 31
        assert all(day["count"] == 0 for day in stats["timeline"])

    def test_counts(self, engine, make_threat, now):
        engine.ingest(make_threat(value="1.1.1.1", date_detected=now, last_seen=now), now)
        engine.ingest(make_threat(value="2.2.2.2", severity="Low", country="FR",
                                  date_detected=now - timedelta(days=1), last_seen=now), now)
        engine.ingest(make_threat(value="3.3.3.3", is_active=False,
                                  date_detected=now - timedelta(days=60),
                                  last_seen=now - timedelta(days=45)), now)

        stats = engine.threat_stats(now)

        assert stats["totalThreats"] == 3
        assert stats["activeThreats"] == 2
        assert stats["staleThreats"] == 1
        assert stats["bySeverity"] == {"Critical": 2, "Low": 1}
        assert stats["topCountries"] == {"DE": 2, "FR": 1}
        assert stats["topMalwareFamilies"] == {"Emotet": 3}
        assert sum(day["count"] for day in stats["timeline"]) == 2
        assert stats["timeline"][-1] == {"date": "2024-03-01", "count": 1}
        assert stats["timeline"][0] == {"date": "2024-01-31", "count": 0}
        assert len(stats["timeline"]) == 31
        assert stats["timeline"][-2] == {"date": "2024-02-29", "count": 1}
