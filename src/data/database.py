"""
SQLite database initialization and connection management.

Single responsibility: own the connection, create tables.
All actual queries live in Repository and RecommendationStore.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Default DB lives next to the repo root
DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "study_coach.db"

SCHEMA_SQL = """
-- Tasks ---------------------------------------------------------------------
CREATE TABLE IF NOT EXISTS tasks (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         INTEGER NOT NULL,
    title           TEXT    NOT NULL,
    description     TEXT    DEFAULT '',
    deadline        TEXT    NOT NULL,
    priority        TEXT    NOT NULL DEFAULT 'medium',
    status          TEXT    NOT NULL DEFAULT 'pending',
    category        TEXT    NOT NULL DEFAULT 'personal',
    estimated_time  INTEGER NOT NULL DEFAULT 60,
    tags_json       TEXT,
    created_at      TEXT    NOT NULL DEFAULT (datetime('now'))
);

-- Daily analytics (one row per user per day) ---------------------------------
CREATE TABLE IF NOT EXISTS daily_analytics (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id             INTEGER NOT NULL,
    date                TEXT    NOT NULL,
    tasks_created       INTEGER NOT NULL DEFAULT 0,
    tasks_completed     INTEGER NOT NULL DEFAULT 0,
    total_work_minutes  REAL    NOT NULL DEFAULT 0,
    pomodoro_sessions   INTEGER NOT NULL DEFAULT 0,
    productivity_score  REAL    NOT NULL DEFAULT 0,
    by_priority_json    TEXT,
    by_category_json    TEXT,
    UNIQUE(user_id, date)
);

-- Schedule ------------------------------------------------------------------
CREATE TABLE IF NOT EXISTS schedules (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL,
    date        TEXT    NOT NULL,
    start_time  TEXT    NOT NULL,
    end_time    TEXT    NOT NULL,
    title       TEXT    NOT NULL,
    description TEXT    DEFAULT '',
    task_id     INTEGER
);

-- Preferences (scalars as columns, nested maps as JSON) ----------------------
CREATE TABLE IF NOT EXISTS user_preferences (
    id                          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id                     INTEGER NOT NULL UNIQUE,
    optimal_study_start         INTEGER NOT NULL,
    optimal_study_end           INTEGER NOT NULL,
    preferred_break_duration    INTEGER NOT NULL,
    max_consecutive_study_hours REAL    NOT NULL,
    weekend_study_preference    INTEGER NOT NULL,
    difficulty_weights_json     TEXT    NOT NULL,
    urgent_threshold            REAL    NOT NULL,
    high_threshold              REAL    NOT NULL,
    medium_threshold            REAL    NOT NULL,
    max_daily_tasks             INTEGER NOT NULL,
    max_daily_study_hours       REAL    NOT NULL,
    balance_factors_json        TEXT    NOT NULL,
    learning_style              TEXT    NOT NULL
);

-- Recommendation batches (one per generation run) ----------------------------
CREATE TABLE IF NOT EXISTS recommendation_batches (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         INTEGER NOT NULL,
    generated_at    TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'staged',
    size            INTEGER NOT NULL DEFAULT 0
);

-- Active pointer: which batch readers see ------------------------------------
CREATE TABLE IF NOT EXISTS active_batches (
    user_id     INTEGER PRIMARY KEY,
    batch_id    INTEGER NOT NULL REFERENCES recommendation_batches(id)
);

-- Recommendations -----------------------------------------------------------
CREATE TABLE IF NOT EXISTS recommendations (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL,
    batch_id    INTEGER NOT NULL REFERENCES recommendation_batches(id),
    type        TEXT    NOT NULL,
    title       TEXT    NOT NULL,
    description TEXT    NOT NULL,
    priority    TEXT    NOT NULL DEFAULT 'medium',
    confidence  INTEGER NOT NULL,
    data_json   TEXT,
    is_active   INTEGER NOT NULL DEFAULT 1,
    is_applied  INTEGER NOT NULL DEFAULT 0,
    applied_at  TEXT,
    expires_at  TEXT,
    created_at  TEXT    NOT NULL
);

-- Indexes for common queries -------------------------------------------------
CREATE INDEX IF NOT EXISTS idx_tasks_user_status    ON tasks(user_id, status);
CREATE INDEX IF NOT EXISTS idx_tasks_deadline       ON tasks(deadline);
CREATE INDEX IF NOT EXISTS idx_schedules_user_date  ON schedules(user_id, date);
CREATE INDEX IF NOT EXISTS idx_recs_user_active     ON recommendations(user_id, is_active, type);
CREATE INDEX IF NOT EXISTS idx_recs_batch           ON recommendations(batch_id);
CREATE INDEX IF NOT EXISTS idx_recs_expires         ON recommendations(expires_at);
"""


def connect_memory() -> sqlite3.Connection:
    """In-memory connection with the full schema. Used by tests and dry runs."""
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA_SQL)
    conn.commit()
    return conn


class Database:
    """Thin wrapper around a SQLite connection."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self.conn: Optional[sqlite3.Connection] = None

    # -- lifecycle -----------------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        """Open (or return existing) connection and ensure schema exists."""
        if self.conn is not None:
            return self.conn
        logger.info("Connecting to SQLite at %s", self.db_path)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row          # dict-like rows
        self.conn.execute("PRAGMA journal_mode=WAL")  # readers don't block the writer
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._create_tables()
        return self.conn

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed.")

    # -- internal ------------------------------------------------------------

    def _create_tables(self) -> None:
        assert self.conn is not None
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()
        logger.info("Database schema ensured.")


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Manages the SQLite connection and makes sure all tables exist on startup.
#
# Key pieces:
#   - SCHEMA_SQL: the full DDL. CREATE IF NOT EXISTS makes it idempotent.
#   - recommendation_batches + active_batches: every generation run writes a
#     new batch; a one-row-per-user pointer says which batch is visible.
#     Swapping that pointer is a single UPDATE, so readers never see a
#     half-written batch.
#   - Nested preference maps are JSON columns; everything queried is a column.
#
# Data flow:
#   App start → Database.connect() → tables created → Repository /
#   RecommendationStore use conn
