"""SQLite persistence: target loading and verdict write-back."""

from __future__ import annotations

import sqlite3

from .config import DB_PATH, ensure_dirs
from .models import Outcome, Target, Verdict, utcnow

REVIEW_STATUSES = ("PENDING", "IN_PROGRESS", "MISSING", "APPLIED", "GOOGLE_ISSUE", "LIVE", "DONE")

# Business status written for each verdict. None leaves the status untouched.
STATUS_ON_VERDICT: dict[Outcome, str | None] = {
    Outcome.confirmed: "LIVE",
    Outcome.absent: "MISSING",
    Outcome.failed: None,
}
# Prior statuses an ABSENT verdict may not overwrite. CONFIRMED always wins.
# Needs product sign-off before any status is added here.
STICKY_ON_ABSENT = frozenset({"GOOGLE_ISSUE"})


def merge_status(prior: str | None, outcome: Outcome) -> str | None:
    """Business status after a verdict, given the status before it."""
    new = STATUS_ON_VERDICT[Outcome(outcome)]
    if new is None:
        return prior
    if outcome == Outcome.absent and prior in STICKY_ON_ABSENT:
        return prior
    return new


_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS reviews (
    id TEXT PRIMARY KEY,
    live_link TEXT,
    review_text TEXT,
    status TEXT NOT NULL DEFAULT 'PENDING',
    check_status TEXT,
    last_checked_at TEXT,
    evidence TEXT,
    check_error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_CREATE_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_reviews_status ON reviews(status);
CREATE INDEX IF NOT EXISTS idx_reviews_check_status ON reviews(check_status);
"""

_UPSERT = """
INSERT INTO reviews (id, live_link, review_text, status, created_at, updated_at)
VALUES (?, ?, ?, COALESCE(?, 'PENDING'), ?, ?)
ON CONFLICT(id) DO UPDATE SET
    live_link = COALESCE(excluded.live_link, reviews.live_link),
    review_text = COALESCE(excluded.review_text, reviews.review_text),
    status = COALESCE(?, reviews.status),
    updated_at = excluded.updated_at
"""


class ReviewStore:
    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            ensure_dirs()
        self._db_path = db_path or str(DB_PATH)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(_CREATE_TABLE + _CREATE_INDEXES)

    def upsert_targets(self, rows: list[dict]) -> int:
        """Insert or refresh review records: ``{id, live_link, review_text?, status?}``."""
        now = utcnow().isoformat()
        count = 0
        with self._connect() as conn:
            for row in rows:
                status = (row.get("status") or "").upper() or None
                if status is not None and status not in REVIEW_STATUSES:
                    raise ValueError(f"Unknown status: {status}")
                conn.execute(_UPSERT, (
                    str(row["id"]),
                    (row.get("live_link") or "").strip() or None,
                    row.get("review_text"),
                    status,
                    now,
                    now,
                    status,
                ))
                count += 1
        return count

    def load_targets(self, resource_ids: list[str]) -> list[Target]:
        """Targets for ``resource_ids`` in request order; rows without a link are skipped."""
        ids: list[str] = []
        seen: set[str] = set()
        for rid in resource_ids:
            key = str(rid)
            if key and key not in seen:
                seen.add(key)
                ids.append(key)
        if not ids:
            return []

        placeholders = ",".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT id, live_link, review_text FROM reviews "
                f"WHERE id IN ({placeholders}) AND live_link IS NOT NULL AND live_link != ''",
                ids,
            ).fetchall()
        by_id = {r["id"]: r for r in rows}
        return [
            Target(resource_id=rid, url=by_id[rid]["live_link"], hint=by_id[rid]["review_text"])
            for rid in ids
            if rid in by_id
        ]

    def persist_verdict(self, verdict: Verdict) -> None:
        with self._connect() as conn:
            row = conn.execute("SELECT status FROM reviews WHERE id = ?", (verdict.resource_id,)).fetchone()
            if row is None:
                raise KeyError(f"Unknown review: {verdict.resource_id}")
            status = merge_status(row["status"], verdict.outcome)
            conn.execute(
                """
                UPDATE reviews
                SET status = ?, check_status = ?, last_checked_at = ?, evidence = ?,
                    check_error = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    status,
                    verdict.outcome.value,
                    verdict.timestamp.isoformat(),
                    verdict.evidence,
                    verdict.error,
                    utcnow().isoformat(),
                    verdict.resource_id,
                ),
            )

    def get(self, resource_id: str) -> dict | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM reviews WHERE id = ?", (str(resource_id),)).fetchone()
        return dict(row) if row else None

    def query(self, status: str | None = None, limit: int = 100, offset: int = 0) -> list[dict]:
        clauses: list[str] = []
        params: list[str | int] = []
        if status:
            clauses.append("status = ?")
            params.append(status.upper())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM reviews {where} ORDER BY updated_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [dict(r) for r in rows]

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM reviews").fetchone()[0]
