"""
SQLite database for jobs, page versions and print orders.

Jobs are the pipeline's durable progress record. Every state change goes
through compare_and_swap_state(), which only applies if the row still has the
version the caller read, so concurrent or repeated step triggers cannot
clobber each other.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .utils import ensure_directory, utcnow

DEFAULT_DB_PATH = Path("data/jobs.db")

_TERMINAL = ("complete", "failed")


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _deserialize_datetime(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    return datetime.fromisoformat(s)


def _event(message: str) -> Dict[str, str]:
    return {"timestamp": utcnow().isoformat(), "message": message}


def _load_events(raw: Optional[str]) -> List[Dict[str, Any]]:
    return [
        {"timestamp": _deserialize_datetime(e["timestamp"]), "message": e["message"]}
        for e in json.loads(raw or "[]")
    ]


class JobDatabase:
    """
    SQLite persistence for the compilation service.

    Thread-safe: each call opens its own connection and SQLite serializes
    writers (WAL mode).
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        ensure_directory(self.db_path.parent)
        self._init_db()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    collection_id TEXT NOT NULL,
                    owner_name TEXT NOT NULL,
                    requested_by TEXT,
                    trim_size TEXT NOT NULL,
                    fingerprint TEXT NOT NULL,
                    pages TEXT NOT NULL,
                    status TEXT NOT NULL,
                    state TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    force_recompile INTEGER NOT NULL DEFAULT 0,
                    warning_record TEXT,
                    covers TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    events TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_cache
                ON jobs(collection_id, fingerprint, trim_size, status)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status
                ON jobs(status)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pages (
                    collection_id TEXT NOT NULL,
                    page_id TEXT NOT NULL,
                    updated_marker TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    locked INTEGER NOT NULL DEFAULT 0,
                    items TEXT,
                    PRIMARY KEY (collection_id, page_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS print_orders (
                    id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL REFERENCES jobs(id),
                    partner_job_id TEXT,
                    status TEXT NOT NULL,
                    quantity INTEGER NOT NULL,
                    shipping_level TEXT NOT NULL,
                    shipping_address TEXT NOT NULL,
                    binding TEXT NOT NULL,
                    paper_type TEXT NOT NULL,
                    package_id TEXT NOT NULL,
                    book_key TEXT NOT NULL,
                    cover_key TEXT NOT NULL,
                    tracking TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    events TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_orders_partner
                ON print_orders(partner_job_id)
            """)

    # Jobs

    def insert_job(self, job_data: Dict[str, Any]) -> None:
        """
        Insert a new job record.

        Args:
            job_data: Job fields; state is the serialized JSON state value
        """
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO jobs (
                    id, collection_id, owner_name, requested_by, trim_size,
                    fingerprint, pages, status, state, version, force_recompile,
                    warning_record, covers, created_at, updated_at, events
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                job_data["id"],
                job_data["collection_id"],
                job_data["owner_name"],
                job_data.get("requested_by"),
                job_data["trim_size"],
                job_data["fingerprint"],
                json.dumps(job_data["pages"]),
                job_data["status"],
                job_data["state"],
                job_data.get("version", 0),
                int(bool(job_data.get("force_recompile"))),
                json.dumps(job_data["warning_record"]) if job_data.get("warning_record") else None,
                json.dumps(job_data.get("covers", [])),
                _serialize_datetime(job_data["created_at"]),
                _serialize_datetime(job_data["updated_at"]),
                json.dumps([
                    {"timestamp": _serialize_datetime(e["timestamp"]), "message": e["message"]}
                    for e in job_data.get("events", [])
                ]),
            ))

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
            return self._job_row_to_dict(row) if row else None

    def list_jobs(self, collection_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """List jobs newest first, optionally for one collection."""
        with self._get_connection() as conn:
            if collection_id is None:
                rows = conn.execute("SELECT * FROM jobs ORDER BY created_at DESC").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM jobs WHERE collection_id = ? ORDER BY created_at DESC",
                    (collection_id,),
                ).fetchall()
            return [self._job_row_to_dict(row) for row in rows]

    def find_complete_job(self, collection_id: str, fingerprint: str, trim_size: str) -> Optional[Dict[str, Any]]:
        """Newest complete job with this content fingerprint, if any."""
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT * FROM jobs
                WHERE collection_id = ? AND fingerprint = ? AND trim_size = ? AND status = 'complete'
                ORDER BY created_at DESC
                LIMIT 1
            """, (collection_id, fingerprint, trim_size)).fetchone()
            return self._job_row_to_dict(row) if row else None

    def list_resumable_jobs(self) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE status NOT IN (?, ?) ORDER BY created_at",
                _TERMINAL,
            ).fetchall()
            return [self._job_row_to_dict(row) for row in rows]

    def compare_and_swap_state(
        self,
        job_id: str,
        expected_version: int,
        status: str,
        state: str,
        event: Optional[str] = None,
    ) -> bool:
        """
        Replace a job's state if its version is still expected_version.

        Args:
            job_id: The job ID
            expected_version: Version the caller read the state at
            status: New status value (denormalized for indexing)
            state: Serialized JSON state value
            event: Optional event to append in the same transaction

        Returns:
            True if applied, False if another writer got there first
        """
        now = _serialize_datetime(utcnow())
        with self._get_connection() as conn:
            cursor = conn.execute("""
                UPDATE jobs SET status = ?, state = ?, version = version + 1, updated_at = ?
                WHERE id = ? AND version = ?
            """, (status, state, now, job_id, expected_version))
            if cursor.rowcount == 0:
                return False
            if event:
                self._append_event(conn, "jobs", job_id, event)
            return True

    def add_job_event(self, job_id: str, message: str) -> None:
        with self._get_connection() as conn:
            self._append_event(conn, "jobs", job_id, message)

    def add_job_cover(self, job_id: str, cover: Dict[str, Any]) -> None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT covers FROM jobs WHERE id = ?", (job_id,)).fetchone()
            if not row:
                return
            covers = json.loads(row["covers"] or "[]")
            covers.append(cover)
            conn.execute(
                "UPDATE jobs SET covers = ?, updated_at = ? WHERE id = ?",
                (json.dumps(covers), _serialize_datetime(utcnow()), job_id),
            )

    def _append_event(self, conn: sqlite3.Connection, table: str, row_id: str, message: str) -> None:
        row = conn.execute(f"SELECT events FROM {table} WHERE id = ?", (row_id,)).fetchone()
        if not row:
            return
        events = json.loads(row["events"] or "[]")
        events.append(_event(message))
        conn.execute(
            f"UPDATE {table} SET events = ?, updated_at = ? WHERE id = ?",
            (json.dumps(events), _serialize_datetime(utcnow()), row_id),
        )

    def _job_row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "collection_id": row["collection_id"],
            "owner_name": row["owner_name"],
            "requested_by": row["requested_by"],
            "trim_size": row["trim_size"],
            "fingerprint": row["fingerprint"],
            "pages": json.loads(row["pages"]),
            "status": row["status"],
            "state": row["state"],
            "version": row["version"],
            "force_recompile": bool(row["force_recompile"]),
            "warning_record": json.loads(row["warning_record"]) if row["warning_record"] else None,
            "covers": json.loads(row["covers"] or "[]"),
            "created_at": _deserialize_datetime(row["created_at"]),
            "updated_at": _deserialize_datetime(row["updated_at"]),
            "events": _load_events(row["events"]),
        }

    # Pages

    def upsert_page(self, page: Dict[str, Any]) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO pages (collection_id, page_id, updated_marker, title, sort_order, locked, items)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (collection_id, page_id) DO UPDATE SET
                    updated_marker = excluded.updated_marker,
                    title = excluded.title,
                    sort_order = excluded.sort_order,
                    locked = excluded.locked,
                    items = excluded.items
            """, (
                page["collection_id"],
                page["page_id"],
                page["updated_marker"],
                page.get("title", ""),
                page.get("order", 0),
                int(bool(page.get("locked"))),
                json.dumps(page.get("items", [])),
            ))

    def get_page(self, collection_id: str, page_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM pages WHERE collection_id = ? AND page_id = ?",
                (collection_id, page_id),
            ).fetchone()
            return self._page_row_to_dict(row) if row else None

    def list_pages(self, collection_id: str, locked_only: bool = False) -> List[Dict[str, Any]]:
        """List a collection's pages, highest sort order first."""
        query = "SELECT * FROM pages WHERE collection_id = ?"
        if locked_only:
            query += " AND locked = 1"
        query += " ORDER BY sort_order DESC, page_id"
        with self._get_connection() as conn:
            rows = conn.execute(query, (collection_id,)).fetchall()
            return [self._page_row_to_dict(row) for row in rows]

    def _page_row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "collection_id": row["collection_id"],
            "page_id": row["page_id"],
            "updated_marker": row["updated_marker"],
            "title": row["title"],
            "order": row["sort_order"],
            "locked": bool(row["locked"]),
            "items": json.loads(row["items"] or "[]"),
        }

    # Print orders

    def insert_order(self, order: Dict[str, Any]) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO print_orders (
                    id, job_id, partner_job_id, status, quantity, shipping_level,
                    shipping_address, binding, paper_type, package_id, book_key,
                    cover_key, tracking, created_at, updated_at, events
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                order["id"],
                order["job_id"],
                order.get("partner_job_id"),
                order["status"],
                order["quantity"],
                order["shipping_level"],
                json.dumps(order["shipping_address"]),
                order["binding"],
                order["paper_type"],
                order["package_id"],
                order["book_key"],
                order["cover_key"],
                json.dumps(order["tracking"]) if order.get("tracking") else None,
                _serialize_datetime(order["created_at"]),
                _serialize_datetime(order["updated_at"]),
                json.dumps([
                    {"timestamp": _serialize_datetime(e["timestamp"]), "message": e["message"]}
                    for e in order.get("events", [])
                ]),
            ))

    def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM print_orders WHERE id = ?", (order_id,)).fetchone()
            return self._order_row_to_dict(row) if row else None

    def get_order_by_partner_id(self, partner_job_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM print_orders WHERE partner_job_id = ?", (partner_job_id,)
            ).fetchone()
            return self._order_row_to_dict(row) if row else None

    def update_order_status(
        self,
        order_id: str,
        status: str,
        tracking: Optional[Dict[str, Any]] = None,
        event: Optional[str] = None,
    ) -> None:
        with self._get_connection() as conn:
            updates = ["status = ?", "updated_at = ?"]
            values: List[Any] = [status, _serialize_datetime(utcnow())]
            if tracking is not None:
                updates.append("tracking = ?")
                values.append(json.dumps(tracking))
            values.append(order_id)
            conn.execute(f"UPDATE print_orders SET {', '.join(updates)} WHERE id = ?", values)
            if event:
                self._append_event(conn, "print_orders", order_id, event)

    def _order_row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "job_id": row["job_id"],
            "partner_job_id": row["partner_job_id"],
            "status": row["status"],
            "quantity": row["quantity"],
            "shipping_level": row["shipping_level"],
            "shipping_address": json.loads(row["shipping_address"]),
            "binding": row["binding"],
            "paper_type": row["paper_type"],
            "package_id": row["package_id"],
            "book_key": row["book_key"],
            "cover_key": row["cover_key"],
            "tracking": json.loads(row["tracking"]) if row["tracking"] else None,
            "created_at": _deserialize_datetime(row["created_at"]),
            "updated_at": _deserialize_datetime(row["updated_at"]),
            "events": _load_events(row["events"]),
        }
