"""
Tests for the REST API.

Covers:
- Register / login / me, 401 without token
- Threat ingestion fires the caller's alert and shows up in history
- Alert CRUD, history and the SSE stream are scoped to the owner
- IoC search with the external lookup mocked
- Report generation and export
"""

import asyncio
import inspect
import json
from unittest.mock import MagicMock

import pytest
import requests
from fastapi.testclient import TestClient

import services.ip_lookup as ip_lookup_mod
from alerts import AlertConditions, AlertRule, AlertType, get_alert_engine
from api import auth, ioc
from api.alerts import alert_event_stream
from api.deps import get_stream_user
from services import IPLookupError, IPLookupService


@pytest.fixture
def client():
    from main import app
    with TestClient(app) as c:
        yield c


def _register(client, email="analyst@example.com", password="s3cret-pass"):
    resp = client.post("/api/auth/register", json={
        "email": email, "password": password, "name": "Analyst"
    })
    assert resp.status_code == 200, resp.text
    return resp.json()["token"]


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


THREAT = {
    "source": "AbuseIPDB",
    "type": "IP",
    "value": "45.95.147.236",
    "severity": "Critical",
    "category": "Botnet",
    "country": "nl",
    "malwareFamily": "Mirai",
    "description": "Mirai scanner",
    "tags": ["mirai", "iot"],
}


# ── Auth ──────────────────────────────────────────────────────────────


class TestAuth:
    def test_register_login_me(self, client):
        _register(client)

        resp = client.post("/api/auth/login", json={
            "email": "Analyst@Example.com", "password": "s3cret-pass"
        })
        assert resp.status_code == 200
        token = resp.json()["token"]

        me = client.get("/api/auth/me", headers=_auth(token))
        assert me.status_code == 200
        assert me.json()["email"] == "analyst@example.com"
        assert "password_hash" not in me.json()

    def test_duplicate_register(self, client):
        _register(client)
        resp = client.post("/api/auth/register", json={
            "email": "analyst@example.com", "password": "another-pass"
        })
        assert resp.status_code == 400

    def test_bad_login(self, client):
        _register(client)
        assert client.post("/api/auth/login", json={
            "email": "nobody@example.com", "password": "x"
        }).json()["detail"] == "User does not exist"
        assert client.post("/api/auth/login", json={
            "email": "analyst@example.com", "password": "wrong-pass"
        }).json()["detail"] == "Invalid email/password"

    def test_me_requires_token(self, client):
        assert client.get("/api/auth/me").status_code == 401
        assert client.get("/api/auth/me", headers=_auth("garbage")).status_code == 401


# ── Threats + alerts ──────────────────────────────────────────────────


class TestThreatAlertFlow:
    def test_ingest_fires_matching_alert(self, client):
        token = _register(client)
        rule = client.post("/api/alerts", headers=_auth(token), json={
            "title": "Critical IPs",
            "conditions": {"type": "IP", "severity": ["Critical"], "keywords": ["MIRAI"]},
            "cooldown_minutes": 30,
        })
        assert rule.status_code == 200, rule.text
        rule_id = rule.json()["rule"]["id"]

        first = client.post("/api/threats", headers=_auth(token), json=THREAT).json()
        assert first["created"] is True
        assert [a["rule_id"] for a in first["alerts"]] == [rule_id]
        assert first["threat"]["country"] == "NL"

        again = client.post("/api/threats", headers=_auth(token), json=THREAT).json()
        assert again["created"] is False
        assert again["threat"]["hit_count"] == 2
        assert again["alerts"] == []  # cooldown

        state = client.get(f"/api/alerts/{rule_id}", headers=_auth(token)).json()
        assert state["rule"]["trigger_count"] == 1
        assert state["state"]["in_cooldown"] is True

        history = client.get("/api/alerts/history", headers=_auth(token)).json()
        assert history["count"] == 1

        reset = client.post(f"/api/alerts/{rule_id}/reset-cooldown", headers=_auth(token))
        assert reset.status_code == 200
        third = client.post("/api/threats", headers=_auth(token), json=THREAT).json()
        assert len(third["alerts"]) == 1

    def test_ingest_requires_auth(self, client):
        assert client.post("/api/threats", json=THREAT).status_code == 401

    def test_invalid_threat(self, client):
        token = _register(client)
        resp = client.post("/api/threats", headers=_auth(token), json={**THREAT, "type": "Nope"})
        assert resp.status_code == 422

    def test_batch_keeps_valid_items(self, client):
        token = _register(client)
        resp = client.post("/api/threats/batch", headers=_auth(token), json=[
            THREAT,
            {**THREAT, "type": "Nope"},
            {**THREAT, "value": "45.95.147.237"},
        ])

        assert resp.status_code == 200, resp.text
        result = resp.json()
        assert result["success"] is False
        assert result["count"] == 2
        assert result["created"] == 2
        assert result["errors"] == 1
        assert client.get("/api/threats").json()["count"] == 2

    def test_list_get_stats(self, client):
        token = _register(client)
        created = client.post("/api/threats", headers=_auth(token), json=THREAT).json()["threat"]

        listing = client.get("/api/threats", params={"severity": "Critical"}).json()
        assert listing["count"] == 1

        assert client.get(f"/api/threats/{created['id']}").json()["value"] == THREAT["value"]
        assert client.get("/api/threats/thr_missing").status_code == 404

        stats = client.get("/api/threats/stats").json()
        assert stats["totalThreats"] == 1
        assert stats["byType"] == {"IP": 1}

    def test_dry_run(self, client):
        token = _register(client)
        client.post("/api/alerts", headers=_auth(token), json={
            "name": "Phishing", "conditions": {"categories": ["Phishing"]}
        })
        resp = client.post("/api/alerts/test", headers=_auth(token), json=THREAT).json()
        assert resp["rules_checked"] == 1
        assert resp["triggered_count"] == 0


class TestAlertOwnership:
    def test_rules_are_scoped_to_owner(self, client):
        alice = _register(client, "alice@example.com")
        bob = _register(client, "bob@example.com")
        rule_id = client.post("/api/alerts", headers=_auth(alice), json={
            "name": "mine"
        }).json()["rule"]["id"]

        assert client.get("/api/alerts", headers=_auth(bob)).json()["count"] == 0
        assert client.get(f"/api/alerts/{rule_id}", headers=_auth(bob)).status_code == 404
        assert client.delete(f"/api/alerts/{rule_id}", headers=_auth(bob)).status_code == 404

        updated = client.put(f"/api/alerts/{rule_id}", headers=_auth(alice), json={
            "name": "renamed", "conditions": {"malwareFamilies": ["Mirai"]}
        }).json()["rule"]
        assert updated["name"] == "renamed"
        assert updated["conditions"]["malware_families"] == ["Mirai"]

        assert client.post(f"/api/alerts/{rule_id}/disable", headers=_auth(alice)).status_code == 200
        assert client.get("/api/alerts", headers=_auth(alice)).json()["rules"][0]["is_active"] is False

        assert client.delete(f"/api/alerts/{rule_id}", headers=_auth(alice)).status_code == 200
        assert client.get("/api/alerts", headers=_auth(alice)).json()["count"] == 0

    def test_name_required(self, client):
        token = _register(client)
        assert client.post("/api/alerts", headers=_auth(token), json={}).status_code == 422

    def test_clearing_history_only_touches_own_events(self, client):
        alice = _register(client, "alice@example.com")
        bob = _register(client, "bob@example.com")
        client.post("/api/alerts", headers=_auth(alice), json={"name": "everything"})
        client.post("/api/threats", headers=_auth(alice), json=THREAT)

        assert client.delete("/api/alerts/history", headers=_auth(bob)).status_code == 200
        assert client.get("/api/alerts/history", headers=_auth(alice)).json()["count"] == 1

        client.delete("/api/alerts/history", headers=_auth(alice))
        assert client.get("/api/alerts/history", headers=_auth(alice)).json()["count"] == 0

    def test_null_settings_leave_rule_unchanged(self, client):
        token = _register(client)
        rule_id = client.post("/api/alerts", headers=_auth(token), json={
            "name": "mine", "cooldown_minutes": 15
        }).json()["rule"]["id"]

        resp = client.put(f"/api/alerts/{rule_id}", headers=_auth(token), json={
            "is_active": None, "cooldown_minutes": None
        })

        assert resp.status_code == 200, resp.text
        assert resp.json()["rule"]["is_active"] is True
        assert resp.json()["rule"]["cooldown_minutes"] == 15


class TestAlertStream:
    def test_requires_token(self, client):
        assert client.get("/api/alerts/stream").status_code == 401
        assert client.get("/api/alerts/stream", params={"token": "garbage"}).status_code == 401

    def test_token_query_parameter(self, client):
        token = _register(client)
        assert get_stream_user(token=token, credentials=None).email == "analyst@example.com"

    def test_delivers_only_own_events(self, make_threat, now):
        engine = get_alert_engine()
        mine = engine.add_rule(AlertRule(id="", owner_id="usr_alice", name="everything"))
        engine.add_rule(AlertRule(
            id="", owner_id="usr_bob", name="domains",
            conditions=AlertConditions(type=AlertType.DOMAIN),
        ))

        async def run():
            alice = alert_event_stream(engine, "usr_alice", keepalive=0.05)
            bob = alert_event_stream(engine, "usr_bob", keepalive=0.05)
            frames = [await alice.__anext__(), await bob.__anext__()]
            subscribed = engine.stats()["subscribers"]

            # evaluated on a worker thread, delivered on the loop
            await asyncio.to_thread(engine.evaluate, make_threat(id="thr_ip"), now)
            frames += [await alice.__anext__(), await bob.__anext__()]

            await alice.aclose()
            await bob.aclose()
            return frames, subscribed

        frames, subscribed = asyncio.run(run())

        assert subscribed == 2
        assert json.loads(frames[0][len("data: "):])["type"] == "connected"
        assert frames[2].startswith("data: ")
        event = json.loads(frames[2][len("data: "):])
        assert event["rule_id"] == mine.id
        assert event["threat_id"] == "thr_ip"
        assert frames[3] == ": keepalive\n\n"
        assert engine.stats()["subscribers"] == 0

    def test_no_backlog_without_listeners(self, make_threat, now):
        engine = get_alert_engine()
        engine.add_rule(AlertRule(id="", owner_id="usr_alice", name="everything"))
        engine.evaluate(make_threat(), now)

        async def run():
            stream = alert_event_stream(engine, "usr_alice", keepalive=0.05)
            frames = [await stream.__anext__(), await stream.__anext__()]
            await stream.aclose()
            return frames

        assert asyncio.run(run())[1] == ": keepalive\n\n"


class TestBlockingRoutes:
    def test_run_in_threadpool(self):
        # sync endpoints are dispatched to FastAPI's threadpool
        for endpoint in (ioc.search_ioc, auth.register, auth.login):
            assert not inspect.iscoroutinefunction(endpoint)


# ── IoC search ────────────────────────────────────────────────────────


class TestIocSearch:
    def test_missing_value(self, client):
        assert client.get("/api/ioc/search").status_code == 400

    def test_lookup_result(self, client):
        lookup = MagicMock()
        lookup.lookup.return_value = {"ip": "8.8.8.8", "country": "US"}
        ip_lookup_mod._ip_lookup = lookup

        resp = client.get("/api/ioc/search", params={"value": "8.8.8.8"})

        assert resp.status_code == 200
        assert resp.json()["result"]["country"] == "US"
        assert resp.json()["known"] is False
        lookup.lookup.assert_called_once_with("8.8.8.8")

    def test_lookup_failure(self, client):
        lookup = MagicMock()
        lookup.lookup.side_effect = IPLookupError("timeout")
        ip_lookup_mod._ip_lookup = lookup

        assert client.get("/api/ioc/search", params={"value": "8.8.8.8"}).status_code == 502


class TestIPLookupService:
    def test_builds_url_and_token(self):
        service = IPLookupService("https://ipinfo.example/", token="abc", timeout=3)
        service.session = MagicMock()
        service.session.get.return_value.json.return_value = {"ip": "1.1.1.1"}

        assert service.lookup(" 1.1.1.1 ") == {"ip": "1.1.1.1"}
        service.session.get.assert_called_once_with(
            "https://ipinfo.example/1.1.1.1/json", params={"token": "abc"}, timeout=3
        )

    def test_http_error_raises(self):
        service = IPLookupService()
        service.session = MagicMock()
        service.session.get.return_value.raise_for_status.side_effect = requests.HTTPError("404")

        with pytest.raises(IPLookupError):
            service.lookup("1.1.1.1")


# ── Reports ───────────────────────────────────────────────────────────


class TestReports:
    def test_generate_list_export(self, client):
        token = _register(client)
        client.post("/api/threats", headers=_auth(token), json=THREAT)
        client.post("/api/alerts", headers=_auth(token), json={
            "name": "crit", "conditions": {"severity": ["Critical"]}
        })

        report = client.get("/api/reports/generate", headers=_auth(token)).json()["report"]
        assert report["title"] == "Threat Intelligence Report"
        assert report["summary"] == {
            "totalThreats": 1, "activeThreats": 1, "totalAlerts": 1, "criticalAlerts": 1
        }

        assert client.get("/api/reports").json()["count"] == 1

        csv_resp = client.get(f"/api/reports/export/{report['id']}")
        assert csv_resp.status_code == 200
        assert csv_resp.headers["content-type"].startswith("text/csv")
        assert THREAT["value"] in csv_resp.text

        json_resp = client.get(f"/api/reports/export/{report['id']}", params={"format": "json"})
        assert json_resp.json()["threats"][0]["value"] == THREAT["value"]

        assert client.get("/api/reports/export/rpt_missing").status_code == 404
