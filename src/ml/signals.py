"""
Signal extractors — derived metrics over already-fetched records.

Everything here is a pure function: no database, no clock. Callers pass `now`
explicitly so the same snapshot always yields the same signals.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Sequence, Tuple

import numpy as np

from src.data.models import DailyAnalytics, ScheduleEntry, Task, UserPreferences

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

URGENCY_HORIZON_DAYS = 14
PRIORITY_WEIGHTS = {"low": 0.25, "medium": 0.5, "high": 0.75, "urgent": 1.0}
DEFAULT_PRIORITY_WEIGHT = 0.5

PRODUCTIVE_DAY_THRESHOLD = 60
STUDY_WINDOW_HOURS = tuple(range(9, 18))   # 9..17 inclusive
LOW_ENERGY_HOURS = (13, 14, 15)            # post-lunch dip
IMBALANCE_SHARE = 60                       # percent
RECENT_WINDOW_DAYS = 7
MIN_GAP_MINUTES = 60
GAP_HORIZON_DAYS = 7


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (round() would bank to even)."""
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def format_hour(hour: int) -> str:
    if hour == 0:
        return "12:00 AM"
    if hour == 12:
        return "12:00 PM"
    return f"{hour - 12}:00 PM" if hour > 12 else f"{hour}:00 AM"


def parse_hhmm(value: str) -> int:
    """'09:30' -> 570 minutes after midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


# ── Task-level signals ─────────────────────────────────────────────────────

def days_until(deadline: datetime, now: datetime) -> float:
    return (deadline - now).total_seconds() / 86400.0


def deadline_urgency(task: Task, now: datetime) -> float:
    """0.0 for deadlines two weeks out or more, 1.0 when due now or overdue."""
    if task.deadline is None:
        return 0.0
    return clamp(1 - days_until(task.deadline, now) / URGENCY_HORIZON_DAYS)


def priority_weight(priority: str) -> float:
    return PRIORITY_WEIGHTS.get(priority, DEFAULT_PRIORITY_WEIGHT)


def difficulty_factor(category: str, prefs: UserPreferences) -> float:
    return prefs.difficulty_weights.get(category, 1.0)


# ── History signals ─────────────────────────────────────────────────────────

@dataclass
class ProductivityPattern:
    peak_hours: List[int] = field(default_factory=list)
    low_energy_hours: List[int] = field(default_factory=lambda: list(LOW_ENERGY_HOURS))
    confidence: int = 50


def productivity_pattern(history: Sequence[DailyAnalytics]) -> ProductivityPattern:
    """
    Attribute each productive day's score to every hour of the study window,
    average per hour, and keep the three best hours (ties -> earlier hour).
    """
    confidence = min(95, 50 + 2 * len(history))
    scores = [d.productivity_score for d in history
              if d.productivity_score > PRODUCTIVE_DAY_THRESHOLD]
    if not scores:
        return ProductivityPattern(confidence=confidence)

    hours = np.array(STUDY_WINDOW_HOURS)
    grid = np.tile(np.array(scores, dtype=float)[:, None], (1, len(hours)))  # day x hour
    hourly_mean = grid.mean(axis=0)
    order = np.lexsort((hours, -hourly_mean))  # last key is primary
    peak = [int(hours[i]) for i in order[:3]]
    return ProductivityPattern(peak_hours=peak, confidence=confidence)


def average_session_length(history: Sequence[DailyAnalytics]) -> float:
    if not history:
        return 0.0
    return float(np.mean([d.total_work_minutes for d in history]))


@dataclass
class CompletionPattern:
    weekday_performance: int = 0
    weekend_performance: int = 0


def completion_pattern(
    history: Sequence[DailyAnalytics], split: str = "calendar"
) -> CompletionPattern:
    """
    Mean productivity on weekdays vs weekends.

    split='calendar'   uses each record's own date
    split='positional' treats record i as weekday when i % 7 < 5 (legacy)
    """
    weekday: List[float] = []
    weekend: List[float] = []
    for index, day in enumerate(history):
        if split == "positional":
            is_weekday = index % 7 < 5
        else:
            is_weekday = day.date.weekday() < 5
        (weekday if is_weekday else weekend).append(day.productivity_score)

    def _avg(values: List[float]) -> int:
        return round_half_up(float(np.mean(values))) if values else 0

    return CompletionPattern(_avg(weekday), _avg(weekend))


@dataclass
class ProcrastinationRisk:
    score: int = 0
    confidence: int = 75
    triggers: List[str] = field(default_factory=lambda: [
        "Deadline pressure", "Task complexity", "Lack of clear goals",
    ])


def procrastination_risk(history: Sequence[DailyAnalytics]) -> ProcrastinationRisk:
    """Risk rises when the last week lags the overall average."""
    if not history:
        return ProcrastinationRisk()
    ordered = sorted(history, key=lambda d: d.date, reverse=True)
    overall = float(np.mean([d.productivity_score for d in ordered]))
    recent = float(np.mean([d.productivity_score for d in ordered[:RECENT_WINDOW_DAYS]]))
    return ProcrastinationRisk(score=max(0, round_half_up(2 * (overall - recent))))


# ── Workload signals ───────────────────────────────────────────────────────

def daily_workload(pending: Sequence[Task]) -> Dict[str, int]:
    """Pending tasks per weekday of their deadline, Monday first."""
    workload = {day: 0 for day in WEEKDAYS}
    for task in pending:
        if task.deadline is not None:
            workload[WEEKDAYS[task.deadline.weekday()]] += 1
    return workload


def subject_distribution(tasks: Sequence[Task]) -> Dict[str, int]:
    distribution: Dict[str, int] = {}
    for task in tasks:
        distribution[task.category] = distribution.get(task.category, 0) + 1
    return distribution


@dataclass
class SubjectImbalance:
    is_imbalanced: bool = False
    dominant_category: str = ""
    percentage: int = 0
    total: int = 0


def subject_imbalance(distribution: Dict[str, int]) -> SubjectImbalance:
    total = sum(distribution.values())
    if total == 0:
        return SubjectImbalance()
    dominant, count = "", 0
    for category, n in distribution.items():
        if n > count:
            dominant, count = category, n
    percentage = round_half_up(count / total * 100)
    return SubjectImbalance(percentage > IMBALANCE_SHARE, dominant, percentage, total)


# ── Schedule signals ────────────────────────────────────────────────────────

def schedule_gaps(
    schedule: Sequence[ScheduleEntry],
    prefs: UserPreferences,
    now: datetime,
    horizon_days: int = GAP_HORIZON_DAYS,
    min_gap_minutes: int = MIN_GAP_MINUTES,
) -> List[dict]:
    """
    Free stretches inside the preferred study window, on upcoming days that
    already have something scheduled. Days with nothing planned are not gaps.
    """
    today = now.date()
    last_day = today + timedelta(days=horizon_days - 1)
    window_start = prefs.optimal_study_start * 60
    window_end = prefs.optimal_study_end * 60

    blocks_by_day: Dict[date, List[Tuple[int, int]]] = defaultdict(list)
    for entry in schedule:
        if entry.date is None or not today <= entry.date <= last_day:
            continue
        blocks_by_day[entry.date].append((parse_hhmm(entry.start_time), parse_hhmm(entry.end_time)))

    gaps: List[dict] = []
    for day in sorted(blocks_by_day):
        cursor = window_start
        if day == today:
            cursor = max(cursor, now.hour * 60 + now.minute)
        free: List[Tuple[int, int]] = []
        for start, end in sorted(blocks_by_day[day]):
            if cursor >= window_end:
                break
            if start > cursor:
                free.append((cursor, min(start, window_end)))
            cursor = max(cursor, end)
        if cursor < window_end:
            free.append((cursor, window_end))

        for start, end in free:
            if end - start >= min_gap_minutes:
                gaps.append({
                    "day": WEEKDAYS[day.weekday()],
                    "date": day.isoformat(),
                    "start": format_hhmm(start),
                    "end": format_hhmm(end),
                    "time": f"{format_hhmm(start)}-{format_hhmm(end)}",
                    "duration": end - start,
                })
    return gaps
