"""
Apply handlers — what happens when a user accepts a recommendation.

Dispatch is keyed by recommendation type. Handlers receive the recommendation,
the repository and the current time, and return a result dict:

    {"success": bool, "action": str, "message": str}
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from src.data.models import Recommendation, ScheduleEntry
from src.data.repository import Repository
from src.ml.signals import format_hhmm, parse_hhmm

logger = logging.getLogger(__name__)

Handler = Callable[[Recommendation, Repository, datetime], dict]


def _result(action: str, message: str, success: bool = True) -> dict:
    return {"success": success, "action": action, "message": message}


def _missing_task(action: str) -> dict:
    return _result(action, "The referenced task no longer exists", success=False)


# ── Built-in handlers ───────────────────────────────────────────────────────

def apply_task_priority(rec: Recommendation, repo: Repository, now: datetime) -> dict:
    """Book a focus block for the task in the suggested slot."""
    task = repo.get_task(rec.data.get("taskId"), rec.user_id)
    if task is None:
        return _missing_task("task_prioritized")

    slot_start = rec.data.get("suggestedTimeSlot", "09:00 - 11:00").split(" - ")[0]
    start = parse_hhmm(slot_start)
    end = min(start + int(rec.data.get("estimatedDuration", 60)), 24 * 60 - 1)
    # today if the slot hasn't started yet, otherwise tomorrow
    day = now.date() if now.hour * 60 + now.minute < start else now.date() + timedelta(days=1)

    entry = repo.create_schedule_entry(ScheduleEntry(
        user_id=rec.user_id, date=day,
        start_time=format_hhmm(start), end_time=format_hhmm(end),
        title=f"Focus: {task.title}", task_id=task.id,
    ))
    logger.info("Booked schedule entry %d for task %d", entry.id, task.id)
    return _result(
        "task_prioritized",
        f"Scheduled '{task.title}' on {day.isoformat()} at {entry.start_time}",
    )


def apply_deadline_alert(rec: Recommendation, repo: Repository, now: datetime) -> dict:
    """Raise the task to urgent. Roll-up alerts have no single task."""
    task_id = rec.data.get("taskId")
    if task_id is None:
        return _result("deadline_managed", "Deadline management strategy has been noted")
    task = repo.get_task(task_id, rec.user_id)
    if task is None:
        return _missing_task("deadline_managed")
    if task.priority != "urgent":
        task.priority = "urgent"
        repo.update_task(task)
    return _result("deadline_managed", f"'{task.title}' is now marked urgent")


def apply_study_time(rec: Recommendation, repo: Repository, now: datetime) -> dict:
    """Move the preferred study window onto the detected peak hours."""
    peak_hours = rec.data.get("peakHours")
    if not peak_hours:
        return _result("study_time_optimized", "Study session guidance has been noted")
    prefs = repo.get_or_create_preferences(rec.user_id)
    prefs.optimal_study_start = min(peak_hours)
    prefs.optimal_study_end = min(24, max(peak_hours) + 1)
    repo.save_preferences(prefs)
    return _result(
        "study_time_optimized",
        f"Study window set to {prefs.optimal_study_start}:00-{prefs.optimal_study_end}:00",
    )


def apply_workload(rec: Recommendation, repo: Repository, now: datetime) -> dict:
    return _result("workload_balanced", "Workload distribution has been optimized")


def apply_pattern(rec: Recommendation, repo: Repository, now: datetime) -> dict:
    return _result("pattern_applied", "Study pattern recommendation has been applied")


def apply_schedule_optimization(rec: Recommendation, repo: Repository, now: datetime) -> dict:
    return _result("schedule_optimized", "Schedule has been optimized based on AI analysis")


DEFAULT_HANDLERS: Dict[str, Handler] = {
    "task_priority": apply_task_priority,
    "study_time": apply_study_time,
    "workload_balance": apply_workload,
    "deadline_alert": apply_deadline_alert,
    "pattern_suggestion": apply_pattern,
    "schedule_optimization": apply_schedule_optimization,
}


class ApplyDispatcher:
    """Type → handler registry. register() overrides or adds a type."""

    def __init__(self, handlers: Optional[Dict[str, Handler]] = None) -> None:
        self._handlers: Dict[str, Handler] = dict(DEFAULT_HANDLERS if handlers is None else handlers)

    def register(self, rec_type: str, handler: Handler) -> None:
        self._handlers[rec_type] = handler

    def dispatch(self, rec: Recommendation, repo: Repository, now: datetime) -> dict:
        handler = self._handlers.get(rec.type)
        if handler is None:
            return _result("noted", "Recommendation noted")
        return handler(rec, repo, now)
