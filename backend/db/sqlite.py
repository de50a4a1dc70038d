"""
SQLite Storage
Persistent document store.

Responsibilities:
- Store threats, alert rules, users and reports as JSON documents
- Mirror filterable fields into indexed columns
- Serialize read-modify-write of a single alert rule

NOT responsible for:
- Validation (done upstream)
- Alert matching (alerts.models handles this)
- Business logic (engines handle this)
"""

import json
import logging
import sqlite3
import pandas as pd
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import get_settings
from core.models import ThreatRecord, User
from alerts.models import AlertRule

logger = logging.getLogger(__name__)

THREAT_FILTERS = {
    "type": "type",
    "severity": "severity",
    "source": "source",
    "category": "category",
    "country": "country",
    "malware_family": "malware_family",
}


class SQLiteStorage:
    """
    SQLite persistence for threat intelligence documents.

    Tables:
        - threats: Indicators of compromise
        - alerts: Alert rules with their trigger state
        - users: Accounts
        - reports: Generated report summaries
    """

    def __init__(self, db_path: str = "data/threatview.db"):
        self.db_path = db_path
        self._ensure_directory()
        self._init_schema()

    def _ensure_directory(self):
        """Create data directory"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self):
        """Initialize database schema"""
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS threats (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    value TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    source TEXT NOT NULL,
                    category TEXT,
                    country TEXT,
                    malware_family TEXT,
                    is_active INTEGER DEFAULT 1,
                    date_detected TEXT NOT NULL,
                    search_text TEXT DEFAULT '',
                    doc TEXT NOT NULL,
                    UNIQUE(type, value)
                );

                CREATE INDEX IF NOT EXISTS idx_threats_value ON threats(value);
                CREATE INDEX IF NOT EXISTS idx_threats_source_date ON threats(source, date_detected);
                CREATE INDEX IF NOT EXISTS idx_threats_severity_active ON threats(severity, is_active);
                CREATE INDEX IF NOT EXISTS idx_threats_country_category ON threats(country, category);
                CREATE INDEX IF NOT EXISTS idx_threats_family_date ON threats(malware_family, date_detected);

                CREATE TABLE IF NOT EXISTS alerts (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    is_active INTEGER DEFAULT 1,
                    created_at TEXT NOT NULL,
                    doc TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_alerts_owner_active ON alerts(owner_id, is_active);

                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    doc TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS reports (
                    id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    doc TEXT NOT NULL
                );
            """)

    # =========================================================================
    # Threats
    # =========================================================================

    def save_threat(self, threat: ThreatRecord) -> ThreatRecord:
        """Insert or replace a threat document"""
        threat.ensure_id()
        search_text = " ".join(
            [threat.value, threat.description or "", threat.malware_family or ""] + threat.tags
        ).lower()

        with self._connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO threats
                   (id, type, value, severity, source, category, country,
                    malware_family, is_active, date_detected, search_text, doc)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    threat.id, threat.type.value, threat.value, threat.severity.value,
                    threat.source.value,
                    threat.category.value if threat.category else None,
                    threat.country, threat.malware_family, int(threat.is_active),
                    threat.date_detected.isoformat(), search_text,
                    threat.model_dump_json(),
                ]
            )
        return threat

    def get_threat(self, threat_id: str) -> Optional[ThreatRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT doc FROM threats WHERE id = ?", [threat_id]).fetchone()
        return ThreatRecord.model_validate_json(row["doc"]) if row else None

    def find_threat(self, threat_type: str, value: str) -> Optional[ThreatRecord]:
        """Look up by the (type, value) identity of an indicator"""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc FROM threats WHERE type = ? AND value = ?",
                [threat_type, value]
            ).fetchone()
        return ThreatRecord.model_validate_json(row["doc"]) if row else None

    def find_threats_by_value(self, value: str) -> List[ThreatRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT doc FROM threats WHERE value = ? ORDER BY date_detected DESC",
                [value]
            ).fetchall()
        return [ThreatRecord.model_validate_json(r["doc"]) for r in rows]

    def get_threats(
        self,
        filters: Dict[str, Any] = None,
        query: str = None,
        is_active: Optional[bool] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[ThreatRecord]:
        """Read threats matching column filters, newest first"""
        clauses, params = [], []
        for key, value in (filters or {}).items():
            column = THREAT_FILTERS.get(key)
            if column and value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(int(is_active))
        if query:
            clauses.append("search_text LIKE ?")
            params.append(f"%{query.lower()}%")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"""SELECT doc FROM threats {where}
                    ORDER BY date_detected DESC LIMIT ? OFFSET ?""",
                params + [limit, offset]
            ).fetchall()
        return [ThreatRecord.model_validate_json(r["doc"]) for r in rows]

    def get_threats_df(self) -> pd.DataFrame:
        """Read threat columns as DataFrame (for statistics)"""
        with self._connect() as conn:
            df = pd.read_sql_query(
                """SELECT id, type, severity, source, category, country,
                          malware_family, is_active, date_detected,
                          json_extract(doc, '$.last_seen') AS last_seen
                   FROM threats""",
                conn
            )

        if not df.empty:
            df['date_detected'] = pd.to_datetime(df['date_detected'], format='ISO8601')
            df['last_seen'] = pd.to_datetime(df['last_seen'], format='ISO8601')
        return df

    def delete_threat(self, threat_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM threats WHERE id = ?", [threat_id])
            return cursor.rowcount > 0

    def count_threats(self, is_active: Optional[bool] = None) -> int:
        with self._connect() as conn:
            if is_active is None:
                return conn.execute("SELECT COUNT(*) FROM threats").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM threats WHERE is_active = ?", [int(is_active)]
            ).fetchone()[0]

    # =========================================================================
    # Alert Rules
    # =========================================================================

    def save_alert(self, rule: AlertRule) -> AlertRule:
        with self._connect() as conn:
            self._write_alert(conn, rule)
        return rule

    def _write_alert(self, conn: sqlite3.Connection, rule: AlertRule) -> None:
        conn.execute(
            """INSERT OR REPLACE INTO alerts (id, owner_id, is_active, created_at, doc)
               VALUES (?, ?, ?, ?, ?)""",
            [rule.id, rule.owner_id, int(rule.is_active),
             rule.created_at.isoformat(), json.dumps(rule.to_dict())]
        )

    def get_alert(self, rule_id: str) -> Optional[AlertRule]:
        with self._connect() as conn:
            row = conn.execute("SELECT doc FROM alerts WHERE id = ?", [rule_id]).fetchone()
        return AlertRule.from_dict(json.loads(row["doc"])) if row else None

    def get_alerts(self, owner_id: str = None, active_only: bool = False) -> List[AlertRule]:
        """Read alert rules, newest first"""
        clauses, params = [], []
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        if active_only:
            clauses.append("is_active = 1")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT doc FROM alerts {where} ORDER BY created_at DESC", params
            ).fetchall()
        return [AlertRule.from_dict(json.loads(r["doc"])) for r in rows]

    def update_alert(
        self,
        rule_id: str,
        mutate: Callable[[AlertRule], bool]
    ) -> Tuple[Optional[AlertRule], bool]:
        """
        Atomically read, mutate and write one alert rule.

        The write lock is taken before the read, so two concurrent
        updates of the same rule never interleave. `mutate` returns
        whether it changed the rule; unchanged rules are not written.

        Returns:
            (rule, changed) — rule is None when it does not exist
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT doc FROM alerts WHERE id = ?", [rule_id]).fetchone()
            if row is None:
                conn.rollback()
                return None, False

            rule = AlertRule.from_dict(json.loads(row["doc"]))
            changed = bool(mutate(rule))
            if changed:
                self._write_alert(conn, rule)
            conn.commit()
            return rule, changed
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def delete_alert(self, rule_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM alerts WHERE id = ?", [rule_id])
            return cursor.rowcount > 0

    # =========================================================================
    # Users
    # =========================================================================

    def save_user(self, user: User) -> User:
        user.ensure_id()
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO users (id, email, doc) VALUES (?, ?, ?)",
                [user.id, user.email, user.model_dump_json()]
            )
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT doc FROM users WHERE id = ?", [user_id]).fetchone()
        return User.model_validate_json(row["doc"]) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc FROM users WHERE email = ?", [email.strip().lower()]
            ).fetchone()
        return User.model_validate_json(row["doc"]) if row else None

    # =========================================================================
    # Reports
    # =========================================================================

    def save_report(self, report: Dict[str, Any]) -> Dict[str, Any]:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO reports (id, created_at, doc) VALUES (?, ?, ?)",
                [report["id"], report["created_at"], json.dumps(report)]
            )
        return report

    def get_report(self, report_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute("SELECT doc FROM reports WHERE id = ?", [report_id]).fetchone()
        return json.loads(row["doc"]) if row else None

    def get_reports(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT doc FROM reports ORDER BY created_at DESC LIMIT ?", [limit]
            ).fetchall()
        return [json.loads(r["doc"]) for r in rows]

    # =========================================================================
    # Management
    # =========================================================================

    def get_stats(self) -> dict:
        """Get storage statistics"""
        with self._connect() as conn:
            counts = {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in ("threats", "alerts", "users", "reports")
            }
        return {**counts, "db_path": self.db_path}

    def clear(self):
        """Clear all data"""
        with self._connect() as conn:
            for table in ("threats", "alerts", "users", "reports"):
                conn.execute(f"DELETE FROM {table}")
        logger.info("Cleared storage at %s", self.db_path)


# =============================================================================
# Singleton
# =============================================================================

_storage: Optional[SQLiteStorage] = None


def get_storage() -> SQLiteStorage:
    """Get singleton storage instance"""
    global _storage
    if _storage is None:
        _storage = SQLiteStorage(get_settings().db_path)
    return _storage
