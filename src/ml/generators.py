"""
Recommendation generators.

Each generator looks at one immutable GenerationContext and returns zero or
more unsaved Recommendation objects of a single type. Generators never touch
the database or the clock; the orchestrator in
src/services/recommendation_service.py owns both.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Sequence

from src.data.models import (
    CATEGORIES,
    DailyAnalytics,
    Recommendation,
    ScheduleEntry,
    Task,
    UserPreferences,
)

from .scoring import (
    ScheduleAnalysis,
    estimate_task_duration,
    schedule_efficiency,
    suggest_time_slot,
    task_priority_score,
)
from .signals import (
    WEEKDAYS,
    average_session_length,
    completion_pattern,
    daily_workload,
    days_until,
    format_hour,
    procrastination_risk,
    productivity_pattern,
    round_half_up,
    subject_distribution,
    subject_imbalance,
)

MIN_PATTERN_HISTORY = 7
SESSION_LENGTH_TOLERANCE = 30   # minutes
WEEKEND_GAP_POINTS = 20
PROCRASTINATION_ALERT = 70
EFFICIENCY_TARGET = 70
MULTIPLE_DEADLINES = 2          # more than this many approaching triggers an alert


@dataclass(frozen=True)
class GenerationContext:
    """One user's data snapshot plus the single `now` of this run."""
    user_id: int
    tasks: Sequence[Task]
    analytics: Sequence[DailyAnalytics]
    schedule: Sequence[ScheduleEntry]
    preferences: UserPreferences
    now: datetime
    weekday_split: str = "calendar"
    pending_tasks: List[Task] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        pending = [t for t in self.tasks if t.status == "pending"]
        pending.sort(key=lambda t: (t.deadline or datetime.max, _tie_key(t)))
        object.__setattr__(self, "pending_tasks", pending)


def _tie_key(task: Task) -> tuple:
    return (task.id is None, task.id or 0, task.title)


class Generator:
    """Base class: subclasses set `name`/`type` and implement generate()."""

    name = "generator"
    type = ""

    def generate(self, context: GenerationContext) -> List[Recommendation]:
        raise NotImplementedError

    def _recommendation(
        self,
        context: GenerationContext,
        title: str,
        description: str,
        priority: str,
        confidence: int,
        data: dict,
        expires_at: datetime,
    ) -> Recommendation:
        return Recommendation(
            user_id=context.user_id,
            type=self.type,
            title=title,
            description=description,
            priority=priority,
            confidence=int(confidence),
            data=data,
            expires_at=expires_at,
        )


# ── Task priority ──────────────────────────────────────────────────────────

class TaskPriorityGenerator(Generator):
    """Top three pending tasks by composite score."""

    name = "task_priority"
    type = "task_priority"
    top_n = 3

    def generate(self, context: GenerationContext) -> List[Recommendation]:
        prefs, now = context.preferences, context.now
        scored = [(task_priority_score(t, prefs, now), t) for t in context.pending_tasks]
        scored.sort(key=lambda pair: (-pair[0], _tie_key(pair[1])))

        recs: List[Recommendation] = []
        for index, (score, task) in enumerate(scored[: self.top_n]):
            recs.append(self._recommendation(
                context,
                title=f"High Priority: {task.title}",
                description=(
                    "Based on deadline, difficulty, and your performance patterns, "
                    "this task should be prioritized. "
                    f"Priority score: {round_half_up(score * 100)}%"
                ),
                priority="urgent" if index == 0 else "high",
                confidence=round_half_up(min(95, 70 + score * 25)),
                data={
                    "kind": "ranking",
                    "rank": index + 1,
                    "taskId": task.id,
                    "priorityScore": round(score, 4),
                    "suggestedTimeSlot": suggest_time_slot(prefs, index * 2),
                    "estimatedDuration": estimate_task_duration(task, prefs),
                },
                expires_at=now + timedelta(days=1),
            ))
        return recs


# ── Study time ─────────────────────────────────────────────────────────────

class StudyTimeGenerator(Generator):
    """Peak productivity hours and session-length drift."""

    name = "study_time"
    type = "study_time"

    def generate(self, context: GenerationContext) -> List[Recommendation]:
        prefs, now, history = context.preferences, context.now, context.analytics
        recs: List[Recommendation] = []
        target_length = prefs.max_consecutive_study_hours * 60

        pattern = productivity_pattern(history)
        if pattern.peak_hours:
            peak = pattern.peak_hours[0]
            recs.append(self._recommendation(
                context,
                title="Optimal Study Time Detected",
                description=(
                    f"Your productivity peaks at {format_hour(peak)}. Schedule important "
                    "tasks during this time for maximum efficiency."
                ),
                priority="high",
                confidence=pattern.confidence,
                data={
                    "kind": "peak_hours",
                    "peakHours": list(pattern.peak_hours),
                    "lowEnergyHours": list(pattern.low_energy_hours),
                    "suggestedSchedule": [
                        {"time": format_hour(h), "hour": h,
                         "activity": "High-focus tasks", "duration": target_length}
                        for h in pattern.peak_hours
                    ],
                },
                expires_at=now + timedelta(days=7),
            ))

        if len(history) >= MIN_PATTERN_HISTORY:
            average = average_session_length(history)
            if abs(average - target_length) > SESSION_LENGTH_TOLERANCE:
                direction = "shorter" if average > target_length else "longer"
                recs.append(self._recommendation(
                    context,
                    title="Study Session Length Optimization",
                    description=(
                        f"Your current average study session is {round_half_up(average)} "
                        f"minutes. Consider {direction} sessions with breaks for better "
                        "retention."
                    ),
                    priority="medium",
                    confidence=75,
                    data={
                        "kind": "session_length",
                        "currentAverage": round(average, 1),
                        "suggestedLength": target_length,
                        "suggestedBreaks": prefs.preferred_break_duration,
                    },
                    expires_at=now + timedelta(days=5),
                ))
        return recs


# ── Workload balance ───────────────────────────────────────────────────────

def _redistribution_plan(workload: Dict[str, int], limit: int) -> List[dict]:
    """Move each overloaded day's excess to the days with most spare room."""
    spare = {day: limit - n for day, n in workload.items() if n < limit}
    plan: List[dict] = []
    for day, n in workload.items():
        excess = n - limit
        while excess > 0:
            candidates = [d for d in spare if spare[d] > 0]
            if not candidates:
                break
            target = min(candidates, key=lambda d: (-spare[d], WEEKDAYS.index(d)))
            moved = min(excess, spare[target])
            plan.append({"from": day, "to": target, "tasks": moved})
            spare[target] -= moved
            excess -= moved
    return plan


class WorkloadBalanceGenerator(Generator):
    """Overloaded weekdays and lopsided category mix."""

    name = "workload_balance"
    type = "workload_balance"

    def generate(self, context: GenerationContext) -> List[Recommendation]:
        prefs, now, pending = context.preferences, context.now, context.pending_tasks
        limit = prefs.max_daily_tasks
        recs: List[Recommendation] = []

        workload = daily_workload(pending)
        overloaded = [[day, n] for day, n in workload.items() if n > limit]
        if overloaded:
            day, count = overloaded[0]
            over = round_half_up(count - limit)
            recs.append(self._recommendation(
                context,
                title="Workload Redistribution Needed",
                description=(
                    f"{day} has {count} tasks ({over} over limit). Consider "
                    "redistributing tasks to maintain balance."
                ),
                priority="high",
                confidence=85,
                data={
                    "kind": "redistribution",
                    "overloadedDay": day,
                    "overloadBy": over,
                    "overloadedDays": overloaded,
                    "redistributionSuggestions": _redistribution_plan(workload, limit),
                    "workloadAnalysis": workload,
                },
                expires_at=now + timedelta(days=3),
            ))

        distribution = subject_distribution(pending)
        imbalance = subject_imbalance(distribution)
        if imbalance.is_imbalanced:
            neglected = [c for c in CATEGORIES if c != imbalance.dominant_category
                         and distribution.get(c, 0) == 0]
            recs.append(self._recommendation(
                context,
                title="Subject Balance Optimization",
                description=(
                    f"You have {imbalance.dominant_category} tasks ({imbalance.percentage}% "
                    "of workload). Consider balancing with other subjects."
                ),
                priority="medium",
                confidence=70,
                data={
                    "kind": "subject_balance",
                    "subjectDistribution": distribution,
                    "imbalanceDetails": {
                        "dominantCategory": imbalance.dominant_category,
                        "percentage": imbalance.percentage,
                        "total": imbalance.total,
                    },
                    "balancingSuggestions": (
                        [f"Allocate time to {c}" for c in neglected]
                        or ["Diversify your study subjects"]
                    ),
                },
                expires_at=now + timedelta(days=5),
            ))
        return recs


# ── Deadline alerts ────────────────────────────────────────────────────────

def _urgent_actions(hours_left: int) -> List[str]:
    if hours_left < 6:
        return ["Focus immediately", "Eliminate distractions", "Break into micro-tasks"]
    if hours_left < 24:
        return ["Schedule focused session today", "Prepare materials", "Set reminders"]
    return ["Create detailed plan", "Schedule work sessions", "Gather resources"]


def _describe_time_left(hours_left: int) -> str:
    if hours_left < 0:
        return f"This task is overdue by {-hours_left} hours."
    if hours_left < 24:
        return f"This task is due in {hours_left} hours."
    return f"This task is due in {round_half_up(hours_left / 24)} days."


class DeadlineAlertGenerator(Generator):
    """One urgent alert per task inside the urgent threshold, plus a
    roll-up when several deadlines cluster inside the high threshold."""

    name = "deadline_alert"
    type = "deadline_alert"

    def generate(self, context: GenerationContext) -> List[Recommendation]:
        prefs, now = context.preferences, context.now
        urgent_days, high_days = prefs.urgent_threshold, prefs.high_threshold
        recs: List[Recommendation] = []
        approaching: List[Task] = []

        for task in context.pending_tasks:
            if task.deadline is None:
                continue
            days = days_until(task.deadline, now)
            if days <= urgent_days:
                recs.append(self._urgent(context, task))
            elif days <= high_days:
                approaching.append(task)

        if len(approaching) > MULTIPLE_DEADLINES:
            recs.append(self._recommendation(
                context,
                title="Multiple Deadlines Approaching",
                description=(
                    f"You have {len(approaching)} tasks due within {high_days:g} days. "
                    "Consider creating a focused schedule."
                ),
                priority="high",
                confidence=80,
                data={
                    "kind": "approaching",
                    "riskTasks": [
                        {"id": t.id, "title": t.title,
                         "deadline": t.deadline.isoformat(), "priority": t.priority}
                        for t in approaching
                    ],
                    "suggestedSchedule": [
                        {"task": t.title, "taskId": t.id,
                         "suggestedTime": f"{min(prefs.optimal_study_start + i, 23):02d}:00",
                         "duration": estimate_task_duration(t, prefs)}
                        for i, t in enumerate(approaching)
                    ],
                },
                expires_at=now + timedelta(days=2),
            ))
        return recs

    def _urgent(self, context: GenerationContext, task: Task) -> Recommendation:
        now = context.now
        hours_left = round_half_up((task.deadline - now).total_seconds() / 3600)
        # an alert for an overdue task would be born expired
        expires_at = task.deadline if task.deadline > now else now + timedelta(days=1)
        return self._recommendation(
            context,
            title=f"Urgent: {task.title}",
            description=f"{_describe_time_left(hours_left)} Immediate action required!",
            priority="urgent",
            confidence=95,
            data={
                "kind": "urgent",
                "taskId": task.id,
                "deadline": task.deadline.isoformat(),
                "hoursRemaining": hours_left,
                "suggestedActions": _urgent_actions(hours_left),
                "requiredFocus": max(0, min(100, round_half_up((48 - hours_left) * 2))),
            },
            expires_at=expires_at,
        )


# ── Pattern suggestions ────────────────────────────────────────────────────

class PatternSuggestionGenerator(Generator):
    """Weekday/weekend gap and procrastination drift. Needs a week of history."""

    name = "pattern_suggestion"
    type = "pattern_suggestion"

    def generate(self, context: GenerationContext) -> List[Recommendation]:
        history, now = context.analytics, context.now
        if len(history) < MIN_PATTERN_HISTORY:
            return []
        recs: List[Recommendation] = []

        pattern = completion_pattern(history, context.weekday_split)
        if pattern.weekday_performance > pattern.weekend_performance + WEEKEND_GAP_POINTS:
            recs.append(self._recommendation(
                context,
                title="Weekend Productivity Opportunity",
                description=(
                    f"Your weekday productivity ({pattern.weekday_performance}%) is "
                    f"significantly higher than weekends ({pattern.weekend_performance}%). "
                    "Consider light study sessions on weekends."
                ),
                priority="medium",
                confidence=75,
                data={
                    "kind": "weekend",
                    "weekdayPerformance": pattern.weekday_performance,
                    "weekendPerformance": pattern.weekend_performance,
                    "suggestedWeekendTasks": [
                        "Light review sessions", "Organizing notes", "Planning upcoming week",
                    ],
                },
                expires_at=now + timedelta(days=7),
            ))

        risk = procrastination_risk(history)
        if risk.score > PROCRASTINATION_ALERT:
            recs.append(self._recommendation(
                context,
                title="Procrastination Prevention",
                description=(
                    f"Analysis shows {risk.score}% procrastination risk. Try the Pomodoro "
                    "technique and break tasks into smaller chunks."
                ),
                priority="high",
                confidence=risk.confidence,
                data={
                    "kind": "procrastination",
                    "riskScore": risk.score,
                    "triggerPatterns": list(risk.triggers),
                    "preventionStrategies": [
                        "Use 25-minute Pomodoro sessions",
                        "Break large tasks into 15-minute chunks",
                        "Set up accountability systems",
                        "Remove distractions from workspace",
                    ],
                },
                expires_at=now + timedelta(days=5),
            ))
        return recs


# ── Schedule optimization ──────────────────────────────────────────────────

EfficiencyFn = Callable[
    [Sequence[ScheduleEntry], Sequence[Task], UserPreferences, datetime], ScheduleAnalysis
]


class ScheduleOptimizationGenerator(Generator):
    """Low schedule efficiency and unused study-window gaps."""

    name = "schedule_optimization"
    type = "schedule_optimization"

    def __init__(self, efficiency_fn: EfficiencyFn = schedule_efficiency) -> None:
        self.efficiency_fn = efficiency_fn

    def generate(self, context: GenerationContext) -> List[Recommendation]:
        prefs, now, pending = context.preferences, context.now, context.pending_tasks
        analysis = self.efficiency_fn(context.schedule, context.tasks, prefs, now)
        recs: List[Recommendation] = []

        if analysis.efficiency_score < EFFICIENCY_TARGET:
            recs.append(self._recommendation(
                context,
                title="Schedule Optimization Available",
                description=(
                    f"Your current schedule efficiency is {analysis.efficiency_score}%. "
                    "AI suggests optimizations for better time utilization."
                ),
                priority="medium",
                confidence=80,
                data={
                    "kind": "efficiency",
                    "currentEfficiency": analysis.efficiency_score,
                    "unscheduledTaskIds": list(analysis.unscheduled_task_ids),
                    "optimizationSuggestions": list(analysis.suggestions),
                    "proposedSchedule": [
                        {"time": f"{min(prefs.optimal_study_start + i, 23):02d}:00",
                         "task": t.title, "taskId": t.id,
                         "duration": estimate_task_duration(t, prefs)}
                        for i, t in enumerate(pending[:5])
                    ],
                    "timeSlotRecommendations": list(analysis.time_slot_recommendations),
                },
                expires_at=now + timedelta(days=7),
            ))

        if analysis.gaps:
            recs.append(self._recommendation(
                context,
                title="Utilize Free Time Slots",
                description=(
                    f"Found {len(analysis.gaps)} unused time slots that could be "
                    "optimized for productivity."
                ),
                priority="low",
                confidence=65,
                data={
                    "kind": "gaps",
                    "availableSlots": list(analysis.gaps),
                    "suggestedActivities": self._fill_gaps(analysis.gaps, pending, prefs),
                },
                expires_at=now + timedelta(days=3),
            ))
        return recs

    @staticmethod
    def _fill_gaps(gaps: List[dict], pending: List[Task], prefs: UserPreferences) -> List[dict]:
        """Pair each gap with the earliest-due unplaced task that fits in it."""
        remaining = list(pending)
        activities: List[dict] = []
        for gap in gaps:
            fit = next((t for t in remaining
                        if estimate_task_duration(t, prefs) <= gap["duration"]), None)
            entry = {"gap": gap, "suggestions": ["Quick review", "Organize notes", "Plan next session"]}
            if fit is not None:
                remaining.remove(fit)
                entry["taskId"] = fit.id
                entry["suggestions"] = [f"Work on {fit.title}"] + entry["suggestions"][:2]
            activities.append(entry)
        return activities


def default_generators() -> List[Generator]:
    return [
        TaskPriorityGenerator(),
        StudyTimeGenerator(),
        WorkloadBalanceGenerator(),
        DeadlineAlertGenerator(),
        PatternSuggestionGenerator(),
        ScheduleOptimizationGenerator(),
    ]


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Turns a snapshot of one user's tasks, analytics, schedule and preferences
#   into suggestions. Six generators, one per recommendation type.
#
# Key design decisions:
#   - One interface (Generator.generate(context)) so the orchestrator just
#     loops over a list. Adding a seventh type = one new class.
#   - GenerationContext is frozen and carries `now`: same snapshot + same now
#     → identical output. Tests pin `now` instead of mocking the clock.
#   - Ties in the top-3 ranking break on task id, so ordering never depends
#     on how the database happened to return rows.
