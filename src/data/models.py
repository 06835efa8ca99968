"""
Data models for StudyCoach.

These are plain dataclasses that represent database rows. They decouple the rest
of the app from raw SQL dictionaries so every layer speaks the same "language."
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

PRIORITIES = ("low", "medium", "high", "urgent")
TASK_STATUSES = ("pending", "in-progress", "completed", "cancelled")
CATEGORIES = ("assignment", "exam", "personal", "project")

RECOMMENDATION_TYPES = (
    "task_priority",
    "study_time",
    "workload_balance",
    "deadline_alert",
    "pattern_suggestion",
    "schedule_optimization",
)

# Tier order used for sorting: higher rank = shown first
PRIORITY_RANK = {"low": 0, "medium": 1, "high": 2, "urgent": 3}


def _zero_counts(keys: tuple) -> Dict[str, int]:
    return {k: 0 for k in keys}


@dataclass
class Task:
    """A piece of work with a deadline, owned by one user."""
    id: Optional[int] = None
    user_id: Optional[int] = None
    title: str = ""
    description: str = ""
    deadline: Optional[datetime] = None
    priority: str = "medium"
    status: str = "pending"
    category: str = "personal"
    estimated_time: int = 60  # minutes
    tags: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None


@dataclass
class DailyAnalytics:
    """One row per (user, calendar day). Append-only history."""
    id: Optional[int] = None
    user_id: Optional[int] = None
    date: Optional[date] = None
    tasks_created: int = 0
    tasks_completed: int = 0
    total_work_minutes: float = 0.0
    pomodoro_sessions: int = 0
    productivity_score: float = 0.0  # 0-100
    tasks_by_priority: Dict[str, int] = field(default_factory=lambda: _zero_counts(PRIORITIES))
    tasks_by_category: Dict[str, int] = field(default_factory=lambda: _zero_counts(CATEGORIES))


@dataclass
class ScheduleEntry:
    """A calendar block. start/end are 'HH:MM' strings on `date`."""
    id: Optional[int] = None
    user_id: Optional[int] = None
    date: Optional[date] = None
    start_time: str = "09:00"
    end_time: str = "10:00"
    title: str = ""
    description: str = ""
    task_id: Optional[int] = None  # weak reference, lookup only


@dataclass
class UserPreferences:
    """Per-user tunables. Created with these defaults on first access."""
    id: Optional[int] = None
    user_id: Optional[int] = None
    optimal_study_start: int = 9   # hour of day
    optimal_study_end: int = 17
    preferred_break_duration: int = 15  # minutes
    max_consecutive_study_hours: float = 2
    weekend_study_preference: bool = False
    difficulty_weights: Dict[str, float] = field(default_factory=lambda: {
        "assignment": 1.0,
        "exam": 1.5,
        "project": 1.2,
        "personal": 0.8,
    })
    urgent_threshold: float = 1   # days before deadline
    high_threshold: float = 3
    medium_threshold: float = 7
    max_daily_tasks: int = 5
    max_daily_study_hours: float = 8
    balance_factors: Dict[str, float] = field(default_factory=lambda: {
        "difficulty": 0.4,
        "deadline": 0.35,
        "priority": 0.25,
    })
    learning_style: str = "visual"


@dataclass
class Recommendation:
    """
    A generated, scored, time-boxed suggestion.

    `data` is a JSON-safe payload whose shape depends on `type`; it always
    carries a `kind` key and whatever the apply handler for that type needs.
    """
    id: Optional[int] = None
    user_id: Optional[int] = None
    batch_id: Optional[int] = None
    type: str = ""
    title: str = ""
    description: str = ""
    priority: str = "medium"
    confidence: int = 0
    data: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    is_applied: bool = False
    applied_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass
class RecommendationBatch:
    """
    One generation run.

    status is one of:
        'staged'     written but not yet visible
        'active'     the batch the user's active pointer names
        'superseded' replaced by a newer batch
    """
    id: Optional[int] = None
    user_id: Optional[int] = None
    generated_at: Optional[datetime] = None
    status: str = "staged"
    size: int = 0
