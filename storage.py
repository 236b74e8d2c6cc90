# storage.py
import json
import sqlite3
import threading
from datetime import datetime, timezone


class Storage:
    """SQLite mirror of job state plus the runtime config table."""

    def __init__(self, db_path="reports.db"):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()

        # Better concurrency for executor threads writing progress
        self.conn.execute("PRAGMA journal_mode=WAL;")
        self.conn.execute("PRAGMA synchronous=NORMAL;")

        self._init_schema()

    def _init_schema(self):
        # Report records, one row per job id
        self.conn.execute("""
        CREATE TABLE IF NOT EXISTS reports (
            job_id TEXT PRIMARY KEY,
            parent_id TEXT,
            seller_id TEXT NOT NULL,
            identifier TEXT NOT NULL,
            report_type TEXT NOT NULL,
            operation TEXT NOT NULL,
            lane TEXT NOT NULL,
            status TEXT NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            start_date TEXT,
            end_date TEXT,
            scheduled_for TEXT,
            enqueued_at TEXT,
            started_at TEXT,
            completed_at TEXT,
            last_attempt_at TEXT,
            error TEXT,
            result TEXT,
            progress TEXT,
            updated_at TEXT NOT NULL
        )
        """)

        # Config table
        self.conn.execute("""
        CREATE TABLE IF NOT EXISTS config (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """)

        self.conn.commit()

    def _now(self):
        return datetime.now(timezone.utc).isoformat()

    # ---------------- Reports ----------------
    def upsert(self, job):
        row = job.to_dict()
        row["result"] = json.dumps(row["result"], default=str) if row["result"] is not None else None
        row["progress"] = json.dumps(row["progress"], default=str)
        row["updated_at"] = self._now()
        with self._lock:
            self.conn.execute("""
                INSERT INTO reports (job_id, parent_id, seller_id, identifier, report_type, operation, lane,
                                     status, attempts, start_date, end_date, scheduled_for, enqueued_at,
                                     started_at, completed_at, last_attempt_at, error, result, progress, updated_at)
                VALUES (:job_id, :parent_id, :seller_id, :identifier, :report_type, :operation, :lane,
                        :status, :attempts, :start_date, :end_date, :scheduled_for, :enqueued_at,
                        :started_at, :completed_at, :last_attempt_at, :error, :result, :progress, :updated_at)
                ON CONFLICT(job_id) DO UPDATE SET
                    lane=excluded.lane, status=excluded.status, attempts=excluded.attempts,
                    scheduled_for=excluded.scheduled_for, enqueued_at=excluded.enqueued_at,
                    started_at=excluded.started_at, completed_at=excluded.completed_at,
                    last_attempt_at=excluded.last_attempt_at, error=excluded.error,
                    result=excluded.result, progress=excluded.progress, updated_at=excluded.updated_at
            """, {k: row.get(k) for k in (
                "job_id", "parent_id", "seller_id", "identifier", "report_type", "operation", "lane",
                "status", "attempts", "start_date", "end_date", "scheduled_for", "enqueued_at",
                "started_at", "completed_at", "last_attempt_at", "error", "result", "progress", "updated_at")})
            self.conn.commit()

    def get_report(self, job_id):
        cur = self.conn.cursor()
        cur.execute("SELECT * FROM reports WHERE job_id=?", (job_id,))
        return cur.fetchone()

    def list_reports(self, status=None, seller_id=None, limit=None):
        query = "SELECT * FROM reports"
        clauses, params = [], []
        if status:
            clauses.append("status=?")
            params.append(status)
        if seller_id:
            clauses.append("seller_id=?")
            params.append(seller_id)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY enqueued_at"
        if limit:
            query += " LIMIT ?"
            params.append(int(limit))
        cur = self.conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def status_counts(self):
        cur = self.conn.cursor()
        cur.execute("SELECT status, COUNT(*) AS count FROM reports GROUP BY status ORDER BY status")
        return {row["status"]: row["count"] for row in cur.fetchall()}

    # ---------------- Config helpers ----------------
    def get_config(self, key, default=None):
        cur = self.conn.cursor()
        cur.execute("SELECT value FROM config WHERE key=?", (key,))
        row = cur.fetchone()
        return row["value"] if row else default

    def set_config(self, key, value):
        with self._lock:
            self.conn.execute("""
                INSERT INTO config (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
            """, (key, str(value), self._now()))
            self.conn.commit()

    def list_config(self):
        cur = self.conn.cursor()
        cur.execute("SELECT key, value, updated_at FROM config ORDER BY key")
        return cur.fetchall()

    def close(self):
        self.conn.close()
