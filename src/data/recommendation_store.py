"""
Recommendation store — staged batch writes with an atomic visibility flip.

A generation run never deletes the old active set before the new one exists:

    1. stage   insert a batch row (status='staged') and all its recommendations
    2. flip    repoint active_batches at the new batch, deactivate old rows
    3. collect delete unapplied rows of superseded batches, then the empty
               batch rows themselves

Steps 1 and 2 are each one transaction. If staging fails the old set is
untouched; if the process dies between 1 and 2 the staged batch is invisible
and gets collected on the next run.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from .models import Recommendation, RecommendationBatch
from .repository import fmt_dt

logger = logging.getLogger(__name__)

_parse_dt = lambda s: datetime.fromisoformat(s) if s else None

# Rows readers may see: the user's pointed-to batch, still active, unexpired
_VISIBLE_SQL = """
    SELECT r.* FROM recommendations r
    JOIN active_batches a ON a.user_id = r.user_id AND a.batch_id = r.batch_id
    WHERE r.user_id = ? AND r.is_active = 1
      AND (r.expires_at IS NULL OR r.expires_at > ?)
"""


class RecommendationStore:
    """Data-access layer for recommendations and their batches."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    # ── Replace-active ──────────────────────────────────────────────────────

    def replace_active(
        self, user_id: int, recommendations: List[Recommendation], now: datetime
    ) -> List[Recommendation]:
        """Persist a new batch and make it the user's only active set."""
        batch_id, saved = self._stage(user_id, recommendations, now)
        self._flip(user_id, batch_id)
        self._collect(user_id, batch_id)
        logger.info("User %d: batch %d active with %d recommendations",
                    user_id, batch_id, len(saved))
        return saved

    def _stage(
        self, user_id: int, recommendations: List[Recommendation], now: datetime
    ) -> tuple:
        saved: List[Recommendation] = []
        with self.conn:
            cur = self.conn.execute(
                "INSERT INTO recommendation_batches (user_id, generated_at, status, size) "
                "VALUES (?, ?, 'staged', ?)",
                (user_id, fmt_dt(now), len(recommendations)),
            )
            batch_id = cur.lastrowid
            for rec in recommendations:
                cur = self.conn.execute(
                    """INSERT INTO recommendations (user_id, batch_id, type, title,
                        description, priority, confidence, data_json, is_active,
                        is_applied, expires_at, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, 0, ?, ?)""",
                    (
                        user_id, batch_id, rec.type, rec.title, rec.description,
                        rec.priority, rec.confidence,
                        json.dumps(rec.data, sort_keys=True),
                        fmt_dt(rec.expires_at), fmt_dt(now),
                    ),
                )
                saved.append(replace(
                    rec, id=cur.lastrowid, user_id=user_id, batch_id=batch_id,
                    is_active=True, is_applied=False, applied_at=None, created_at=now,
                ))
        return batch_id, saved

    def _flip(self, user_id: int, batch_id: int) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE recommendations SET is_active = 0 "
                "WHERE user_id = ? AND batch_id != ? AND is_active = 1",
                (user_id, batch_id),
            )
            self.conn.execute(
                "UPDATE recommendation_batches SET status = 'superseded' "
                "WHERE user_id = ? AND id != ? AND status = 'active'",
                (user_id, batch_id),
            )
            self.conn.execute(
                "UPDATE recommendation_batches SET status = 'active' WHERE id = ?",
                (batch_id,),
            )
            self.conn.execute(
                "INSERT INTO active_batches (user_id, batch_id) VALUES (?, ?) "
                "ON CONFLICT(user_id) DO UPDATE SET batch_id = excluded.batch_id",
                (user_id, batch_id),
            )

    def _collect(self, user_id: int, keep_batch_id: int) -> None:
        """Drop unapplied rows of every other batch; applied ones stay as history."""
        with self.conn:
            cur = self.conn.execute(
                "DELETE FROM recommendations "
                "WHERE user_id = ? AND batch_id != ? AND is_applied = 0",
                (user_id, keep_batch_id),
            )
            # orphaned staged batches from an interrupted run
            self.conn.execute(
                "UPDATE recommendation_batches SET status = 'superseded' "
                "WHERE user_id = ? AND id != ? AND status = 'staged'",
                (user_id, keep_batch_id),
            )
            self._drop_empty_batches(user_id)
        if cur.rowcount:
            logger.debug("User %d: collected %d old recommendations", user_id, cur.rowcount)

    # ── Reads ───────────────────────────────────────────────────────────────

    def list_active(
        self,
        user_id: int,
        now: datetime,
        rec_type: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> List[Recommendation]:
        query = _VISIBLE_SQL
        params: list = [user_id, fmt_dt(now)]
        if rec_type:
            query += " AND r.type = ?"
            params.append(rec_type)
        if priority:
            query += " AND r.priority = ?"
            params.append(priority)
        rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_recommendation(r) for r in rows]

    def list_all(self, user_id: int) -> List[Recommendation]:
        rows = self.conn.execute(
            "SELECT * FROM recommendations WHERE user_id = ? ORDER BY id",
            (user_id,),
        ).fetchall()
        return [self._row_to_recommendation(r) for r in rows]

    def list_applied(self, user_id: int, limit: int = 10) -> List[Recommendation]:
        rows = self.conn.execute(
            "SELECT * FROM recommendations WHERE user_id = ? AND is_applied = 1 "
            "ORDER BY applied_at DESC, id DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [self._row_to_recommendation(r) for r in rows]

    def get_for_user(self, rec_id: int, user_id: int) -> Optional[Recommendation]:
        """Ownership-scoped lookup; another user's row looks like a missing row."""
        row = self.conn.execute(
            "SELECT * FROM recommendations WHERE id = ? AND user_id = ?",
            (rec_id, user_id),
        ).fetchone()
        return self._row_to_recommendation(row) if row else None

    def get_active_batch(self, user_id: int) -> Optional[RecommendationBatch]:
        row = self.conn.execute(
            "SELECT b.* FROM recommendation_batches b "
            "JOIN active_batches a ON a.batch_id = b.id WHERE a.user_id = ?",
            (user_id,),
        ).fetchone()
        if not row:
            return None
        return RecommendationBatch(
            id=row["id"], user_id=row["user_id"],
            generated_at=_parse_dt(row["generated_at"]),
            status=row["status"], size=row["size"],
        )

    # ── Flag updates ────────────────────────────────────────────────────────

    def mark_applied(self, rec_id: int, applied_at: datetime) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE recommendations SET is_applied = 1, applied_at = ? WHERE id = ?",
                (fmt_dt(applied_at), rec_id),
            )

    def deactivate(self, rec_id: int) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE recommendations SET is_active = 0 WHERE id = ?", (rec_id,)
            )

    def reap_expired(self, now: datetime) -> int:
        """Delete expired rows nobody applied. Reads never depend on this."""
        with self.conn:
            cur = self.conn.execute(
                "DELETE FROM recommendations "
                "WHERE expires_at IS NOT NULL AND expires_at <= ? AND is_applied = 0",
                (fmt_dt(now),),
            )
            self._drop_empty_batches()
        if cur.rowcount:
            logger.info("Reaped %d expired recommendations", cur.rowcount)
        return cur.rowcount

    def count_batches(self, user_id: int) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS n FROM recommendation_batches WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row["n"]

    def _drop_empty_batches(self, user_id: Optional[int] = None) -> None:
        """Delete superseded batches with no rows left. Runs inside the caller's transaction."""
        query = (
            "DELETE FROM recommendation_batches "
            "WHERE status = 'superseded' AND NOT EXISTS ("
            "SELECT 1 FROM recommendations r WHERE r.batch_id = recommendation_batches.id)"
        )
        params: list = []
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        self.conn.execute(query, params)

    # ── Row mappers ─────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_recommendation(row: sqlite3.Row) -> Recommendation:
        return Recommendation(
            id=row["id"], user_id=row["user_id"], batch_id=row["batch_id"],
            type=row["type"], title=row["title"],
            description=row["description"], priority=row["priority"],
            confidence=row["confidence"],
            data=json.loads(row["data_json"]) if row["data_json"] else {},
            is_active=bool(row["is_active"]),
            is_applied=bool(row["is_applied"]),
            applied_at=_parse_dt(row["applied_at"]),
            expires_at=_parse_dt(row["expires_at"]),
            created_at=_parse_dt(row["created_at"]),
        )


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Persists recommendation batches so a reader sees either the old set or
#   the new set, never a mixture and never nothing-because-we-crashed.
#
# Key design decisions:
#   - Stage-then-flip instead of delete-then-insert: the old rows stay active
#     until the new batch is fully written.
#   - The active_batches pointer is the source of truth for visibility; the
#     is_active flag additionally records per-row dismissals.
#   - Expiry is filtered at read time (expires_at > now), so reaping is
#     housekeeping only and can run whenever.
