"""
Analytics Service — keeps the per-day analytics row current.

The row for a day is created lazily on the first event of that day and then
updated incrementally. History is never deleted; readers cap it by date.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, Optional

from src.data.models import DailyAnalytics, Task
from src.data.repository import Repository
from src.ml.signals import round_half_up

logger = logging.getLogger(__name__)


class AnalyticsService:
    """Incremental updates of DailyAnalytics from task and pomodoro events."""

    def __init__(self, repo: Repository, clock: Callable[[], datetime] = datetime.now) -> None:
        self.repo = repo
        self.clock = clock

    def record_task_created(self, user_id: int) -> DailyAnalytics:
        record = self._today(user_id)
        record.tasks_created += 1
        self._rescore(record)
        return self.repo.upsert_analytics(record)

    def record_task_completed(self, user_id: int, task: Task) -> DailyAnalytics:
        record = self._today(user_id)
        record.tasks_completed += 1
        record.tasks_by_priority[task.priority] = record.tasks_by_priority.get(task.priority, 0) + 1
        record.tasks_by_category[task.category] = record.tasks_by_category.get(task.category, 0) + 1
        self._rescore(record)
        return self.repo.upsert_analytics(record)

    def record_pomodoro(self, user_id: int, work_minutes: float) -> DailyAnalytics:
        record = self._today(user_id)
        record.total_work_minutes += work_minutes
        record.pomodoro_sessions += 1
        return self.repo.upsert_analytics(record)

    def _today(self, user_id: int, day: Optional[date] = None) -> DailyAnalytics:
        day = day or self.clock().date()
        record = self.repo.get_analytics_day(user_id, day)
        if record is None:
            logger.debug("Starting analytics row for user %d on %s", user_id, day)
            record = DailyAnalytics(user_id=user_id, date=day)
        return record

    @staticmethod
    def _rescore(record: DailyAnalytics) -> None:
        """Completed / created for the day, as a percentage."""
        if record.tasks_created > 0:
            record.productivity_score = min(
                100, round_half_up(record.tasks_completed / record.tasks_created * 100)
            )
        else:
            record.productivity_score = 0
