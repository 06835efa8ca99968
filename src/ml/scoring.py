"""
Composite scores built from the signals in signals.py.

Weights come from the user's preferences, so two users with the same tasks
can get different rankings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Sequence

from src.data.models import ScheduleEntry, Task, UserPreferences

from .signals import (
    clamp,
    deadline_urgency,
    difficulty_factor,
    priority_weight,
    round_half_up,
    schedule_gaps,
    GAP_HORIZON_DAYS,
)

BASE_TASK_MINUTES = 60
SLOT_HOURS = 2

# schedule_efficiency penalties
UNSCHEDULED_PENALTY = 10      # per pending task due soon with no block
GAP_PENALTY_PER_HOUR = 5
MAX_PENALTY = 50              # per component


def task_priority_score(task: Task, prefs: UserPreferences, now: datetime) -> float:
    """Weighted urgency + priority + difficulty, clamped to [0, 1]."""
    factors = prefs.balance_factors
    score = (
        deadline_urgency(task, now) * factors.get("deadline", 0.0)
        + priority_weight(task.priority) * factors.get("priority", 0.0)
        + (difficulty_factor(task.category, prefs) / 2) * factors.get("difficulty", 0.0)
    )
    return clamp(score)


def estimate_task_duration(task: Task, prefs: UserPreferences) -> int:
    base = task.estimated_time or BASE_TASK_MINUTES
    return round_half_up(base * difficulty_factor(task.category, prefs))


def suggest_time_slot(prefs: UserPreferences, offset: int = 0) -> str:
    """A two-hour slot `offset` hours into the study window, kept inside it.
    Windows shorter than two hours get the whole window."""
    start = prefs.optimal_study_start + offset
    if start + SLOT_HOURS > prefs.optimal_study_end:
        start = max(prefs.optimal_study_start, prefs.optimal_study_end - SLOT_HOURS)
    end = min(start + SLOT_HOURS, prefs.optimal_study_end)
    return f"{start:02d}:00 - {end:02d}:00"


@dataclass
class ScheduleAnalysis:
    efficiency_score: int = 100
    unscheduled_task_ids: List[int] = field(default_factory=list)
    gap_minutes: int = 0
    gaps: List[dict] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    time_slot_recommendations: List[str] = field(default_factory=list)


def schedule_efficiency(
    schedule: Sequence[ScheduleEntry],
    tasks: Sequence[Task],
    prefs: UserPreferences,
    now: datetime,
) -> ScheduleAnalysis:
    """
    0-100. Starts at 100 and loses points for pending tasks due within the
    gap horizon that have no schedule block, and for unused study-window
    time on planned days. Never increases when either of those grows.
    """
    horizon_end = now + timedelta(days=GAP_HORIZON_DAYS)
    booked = {e.task_id for e in schedule if e.task_id is not None}
    unscheduled = sorted(
        (t.id for t in tasks
         if t.status == "pending" and t.deadline is not None
         and t.deadline <= horizon_end and t.id not in booked),
        key=lambda i: (i is None, i or 0),
    )
    gaps = schedule_gaps(schedule, prefs, now)
    gap_minutes = sum(g["duration"] for g in gaps)

    penalty = (
        min(MAX_PENALTY, UNSCHEDULED_PENALTY * len(unscheduled))
        + min(MAX_PENALTY, GAP_PENALTY_PER_HOUR * gap_minutes / 60)
    )
    score = max(0, round_half_up(100 - penalty))

    suggestions: List[str] = []
    if unscheduled:
        suggestions.append(f"Block time for {len(unscheduled)} task(s) due this week")
    if gap_minutes:
        suggestions.append("Consolidate similar tasks into open study-window slots")
    suggestions.append("Add buffer time between sessions")

    start = prefs.optimal_study_start
    end = prefs.optimal_study_end
    slots = [f"{start:02d}:00-{min(start + SLOT_HOURS, end):02d}:00: High-focus work"]
    if end - SLOT_HOURS > start + SLOT_HOURS:
        slots.append(f"{end - SLOT_HOURS:02d}:00-{end:02d}:00: Routine tasks")

    return ScheduleAnalysis(
        efficiency_score=score,
        unscheduled_task_ids=unscheduled,
        gap_minutes=gap_minutes,
        gaps=gaps,
        suggestions=suggestions,
        time_slot_recommendations=slots,
    )
