from .database import Database
from .models import DailyAnalytics, Recommendation, RecommendationBatch, ScheduleEntry, Task, UserPreferences
from .recommendation_store import RecommendationStore
from .repository import Repository

__all__ = [
    "Database", "DailyAnalytics", "Recommendation", "RecommendationBatch",
    "ScheduleEntry", "Task", "UserPreferences", "RecommendationStore", "Repository",
]
