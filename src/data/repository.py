"""
Repository — the single place where SQL for user data lives.

Tasks, daily analytics, schedule entries and preferences. Recommendations have
their own store (recommendation_store.py) because of the batch bookkeeping.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import replace
from datetime import date, datetime
from typing import List, Optional

from .models import DailyAnalytics, ScheduleEntry, Task, UserPreferences

logger = logging.getLogger(__name__)

# helpers: ISO strings <-> datetime/date. Fixed width keeps text comparison
# in SQL consistent with datetime comparison.
_parse_dt = lambda s: datetime.fromisoformat(s) if s else None
_parse_date = lambda s: date.fromisoformat(s) if s else None


def fmt_dt(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat(timespec="microseconds") if dt else None


class Repository:
    """Data-access layer wrapping a sqlite3 connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    # ── Tasks ───────────────────────────────────────────────────────────────

    def create_task(self, task: Task) -> Task:
        created = task.created_at or datetime.now()
        cur = self.conn.execute(
            """INSERT INTO tasks (user_id, title, description, deadline, priority,
                status, category, estimated_time, tags_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                task.user_id, task.title, task.description, fmt_dt(task.deadline),
                task.priority, task.status, task.category, task.estimated_time,
                json.dumps(task.tags), fmt_dt(created),
            ),
        )
        self.conn.commit()
        return replace(task, id=cur.lastrowid, created_at=created)

    def get_task(self, task_id: int, user_id: Optional[int] = None) -> Optional[Task]:
        if user_id is None:
            row = self.conn.execute(
                "SELECT * FROM tasks WHERE id = ?", (task_id,)
            ).fetchone()
        else:
            row = self.conn.execute(
                "SELECT * FROM tasks WHERE id = ? AND user_id = ?", (task_id, user_id)
            ).fetchone()
        return self._row_to_task(row) if row else None

    def list_tasks(
        self,
        user_id: int,
        status: Optional[str] = None,
        deadline_after: Optional[datetime] = None,
        deadline_before: Optional[datetime] = None,
    ) -> List[Task]:
        query = "SELECT * FROM tasks"
        conditions: List[str] = ["user_id = ?"]
        params: list = [user_id]

        if status is not None:
            conditions.append("status = ?")
            params.append(status)
        if deadline_after:
            conditions.append("deadline >= ?")
            params.append(fmt_dt(deadline_after))
        if deadline_before:
            conditions.append("deadline <= ?")
            params.append(fmt_dt(deadline_before))

        query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY deadline, id"
        rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_task(r) for r in rows]

    def update_task(self, task: Task) -> None:
        self.conn.execute(
            """UPDATE tasks SET
                title = ?, description = ?, deadline = ?, priority = ?,
                status = ?, category = ?, estimated_time = ?, tags_json = ?
            WHERE id = ? AND user_id = ?""",
            (
                task.title, task.description, fmt_dt(task.deadline), task.priority,
                task.status, task.category, task.estimated_time,
                json.dumps(task.tags), task.id, task.user_id,
            ),
        )
        self.conn.commit()

    def delete_task(self, task_id: int, user_id: int) -> bool:
        cur = self.conn.execute(
            "DELETE FROM tasks WHERE id = ? AND user_id = ?", (task_id, user_id)
        )
        self.conn.commit()
        if cur.rowcount:
            logger.info("Deleted task %d", task_id)
        return cur.rowcount > 0

    # ── Daily analytics ─────────────────────────────────────────────────────

    def get_analytics_day(self, user_id: int, day: date) -> Optional[DailyAnalytics]:
        row = self.conn.execute(
            "SELECT * FROM daily_analytics WHERE user_id = ? AND date = ?",
            (user_id, day.isoformat()),
        ).fetchone()
        return self._row_to_analytics(row) if row else None

    def upsert_analytics(self, record: DailyAnalytics) -> DailyAnalytics:
        """Insert or overwrite the (user, date) row."""
        self.conn.execute(
            """INSERT INTO daily_analytics (user_id, date, tasks_created,
                tasks_completed, total_work_minutes, pomodoro_sessions,
                productivity_score, by_priority_json, by_category_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, date) DO UPDATE SET
                tasks_created = excluded.tasks_created,
                tasks_completed = excluded.tasks_completed,
                total_work_minutes = excluded.total_work_minutes,
                pomodoro_sessions = excluded.pomodoro_sessions,
                productivity_score = excluded.productivity_score,
                by_priority_json = excluded.by_priority_json,
                by_category_json = excluded.by_category_json""",
            (
                record.user_id, record.date.isoformat(), record.tasks_created,
                record.tasks_completed, record.total_work_minutes,
                record.pomodoro_sessions, record.productivity_score,
                json.dumps(record.tasks_by_priority),
                json.dumps(record.tasks_by_category),
            ),
        )
        self.conn.commit()
        return self.get_analytics_day(record.user_id, record.date)

    def list_analytics(
        self, user_id: int, since: Optional[date] = None, until: Optional[date] = None
    ) -> List[DailyAnalytics]:
        """Analytics history, most recent day first."""
        query = "SELECT * FROM daily_analytics WHERE user_id = ?"
        params: list = [user_id]
        if since:
            query += " AND date >= ?"
            params.append(since.isoformat())
        if until:
            query += " AND date <= ?"
            params.append(until.isoformat())
        query += " ORDER BY date DESC"
        rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_analytics(r) for r in rows]

    # ── Schedule ────────────────────────────────────────────────────────────

    def create_schedule_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        cur = self.conn.execute(
            """INSERT INTO schedules (user_id, date, start_time, end_time, title,
                description, task_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                entry.user_id, entry.date.isoformat(), entry.start_time,
                entry.end_time, entry.title, entry.description, entry.task_id,
            ),
        )
        self.conn.commit()
        return replace(entry, id=cur.lastrowid)

    def list_schedule(
        self, user_id: int, since: Optional[date] = None, until: Optional[date] = None
    ) -> List[ScheduleEntry]:
        query = "SELECT * FROM schedules WHERE user_id = ?"
        params: list = [user_id]
        if since:
            query += " AND date >= ?"
            params.append(since.isoformat())
        if until:
            query += " AND date <= ?"
            params.append(until.isoformat())
        query += " ORDER BY date, start_time, id"
        rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_schedule(r) for r in rows]

    # ── Preferences ─────────────────────────────────────────────────────────

    def get_preferences(self, user_id: int) -> Optional[UserPreferences]:
        row = self.conn.execute(
            "SELECT * FROM user_preferences WHERE user_id = ?", (user_id,)
        ).fetchone()
        return self._row_to_preferences(row) if row else None

    def save_preferences(self, prefs: UserPreferences) -> UserPreferences:
        self.conn.execute(
            """INSERT INTO user_preferences (user_id, optimal_study_start,
                optimal_study_end, preferred_break_duration,
                max_consecutive_study_hours, weekend_study_preference,
                difficulty_weights_json, urgent_threshold, high_threshold,
                medium_threshold, max_daily_tasks, max_daily_study_hours,
                balance_factors_json, learning_style)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                optimal_study_start = excluded.optimal_study_start,
                optimal_study_end = excluded.optimal_study_end,
                preferred_break_duration = excluded.preferred_break_duration,
                max_consecutive_study_hours = excluded.max_consecutive_study_hours,
                weekend_study_preference = excluded.weekend_study_preference,
                difficulty_weights_json = excluded.difficulty_weights_json,
                urgent_threshold = excluded.urgent_threshold,
                high_threshold = excluded.high_threshold,
                medium_threshold = excluded.medium_threshold,
                max_daily_tasks = excluded.max_daily_tasks,
                max_daily_study_hours = excluded.max_daily_study_hours,
                balance_factors_json = excluded.balance_factors_json,
                learning_style = excluded.learning_style""",
            (
                prefs.user_id, prefs.optimal_study_start, prefs.optimal_study_end,
                prefs.preferred_break_duration, prefs.max_consecutive_study_hours,
                int(prefs.weekend_study_preference),
                json.dumps(prefs.difficulty_weights, sort_keys=True),
                prefs.urgent_threshold, prefs.high_threshold, prefs.medium_threshold,
                prefs.max_daily_tasks, prefs.max_daily_study_hours,
                json.dumps(prefs.balance_factors, sort_keys=True),
                prefs.learning_style,
            ),
        )
        self.conn.commit()
        return self.get_preferences(prefs.user_id)

    def get_or_create_preferences(self, user_id: int) -> UserPreferences:
        prefs = self.get_preferences(user_id)
        if prefs:
            return prefs
        logger.info("Creating default preferences for user %d", user_id)
        return self.save_preferences(UserPreferences(user_id=user_id))

    # ── Users ───────────────────────────────────────────────────────────────

    def list_user_ids(self) -> List[int]:
        """Every user id that owns at least one task or preferences row."""
        rows = self.conn.execute(
            "SELECT user_id FROM tasks UNION SELECT user_id FROM user_preferences "
            "ORDER BY user_id"
        ).fetchall()
        return [r["user_id"] for r in rows]

    # ── Row mappers ─────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"], user_id=row["user_id"], title=row["title"],
            description=row["description"] or "",
            deadline=_parse_dt(row["deadline"]),
            priority=row["priority"], status=row["status"],
            category=row["category"], estimated_time=row["estimated_time"],
            tags=json.loads(row["tags_json"]) if row["tags_json"] else [],
            created_at=_parse_dt(row["created_at"]),
        )

    @staticmethod
    def _row_to_analytics(row: sqlite3.Row) -> DailyAnalytics:
        record = DailyAnalytics(
            id=row["id"], user_id=row["user_id"], date=_parse_date(row["date"]),
            tasks_created=row["tasks_created"],
            tasks_completed=row["tasks_completed"],
            total_work_minutes=row["total_work_minutes"],
            pomodoro_sessions=row["pomodoro_sessions"],
            productivity_score=row["productivity_score"],
        )
        if row["by_priority_json"]:
            record.tasks_by_priority.update(json.loads(row["by_priority_json"]))
        if row["by_category_json"]:
            record.tasks_by_category.update(json.loads(row["by_category_json"]))
        return record

    @staticmethod
    def _row_to_schedule(row: sqlite3.Row) -> ScheduleEntry:
        return ScheduleEntry(
            id=row["id"], user_id=row["user_id"], date=_parse_date(row["date"]),
            start_time=row["start_time"], end_time=row["end_time"],
            title=row["title"], description=row["description"] or "",
            task_id=row["task_id"],
        )

    @staticmethod
    def _row_to_preferences(row: sqlite3.Row) -> UserPreferences:
        return UserPreferences(
            id=row["id"], user_id=row["user_id"],
            optimal_study_start=row["optimal_study_start"],
            optimal_study_end=row["optimal_study_end"],
            preferred_break_duration=row["preferred_break_duration"],
            max_consecutive_study_hours=row["max_consecutive_study_hours"],
            weekend_study_preference=bool(row["weekend_study_preference"]),
            difficulty_weights=json.loads(row["difficulty_weights_json"]),
            urgent_threshold=row["urgent_threshold"],
            high_threshold=row["high_threshold"],
            medium_threshold=row["medium_threshold"],
            max_daily_tasks=row["max_daily_tasks"],
            max_daily_study_hours=row["max_daily_study_hours"],
            balance_factors=json.loads(row["balance_factors_json"]),
            learning_style=row["learning_style"],
        )


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The Repository is the ONLY place raw SQL for user data lives. Services
#   call repo.list_tasks() instead of writing SQL strings ("Repository
#   Pattern").
#
# Key methods:
#   - CRUD + filtered queries for tasks (by status / deadline range)
#   - upsert_analytics(): ON CONFLICT keeps exactly one row per user per day
#   - get_or_create_preferences(): first access writes the defaults
#
# Data flow:
#   Service layer → Repository.method() → SQL → sqlite3.Row → dataclass model
