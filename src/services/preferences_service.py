"""
Preferences Service — get-or-create and validated partial updates.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, fields
from numbers import Real
from typing import Any, Dict

from src.data.models import CATEGORIES, UserPreferences
from src.data.repository import Repository

from .errors import UpstreamIOError, ValidationError

logger = logging.getLogger(__name__)

LEARNING_STYLES = ("visual", "auditory", "kinesthetic", "reading")
BALANCE_KEYS = ("difficulty", "deadline", "priority")
_READ_ONLY = ("id", "user_id")


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


class PreferencesService:
    """Reads and writes UserPreferences, rejecting malformed weights."""

    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    def get(self, user_id: int) -> UserPreferences:
        try:
            return self.repo.get_or_create_preferences(user_id)
        except sqlite3.Error as exc:
            raise UpstreamIOError("Failed to fetch preferences") from exc

    def update(self, user_id: int, updates: Dict[str, Any]) -> UserPreferences:
        """
        Apply a partial update. Dict-valued fields (difficulty_weights,
        balance_factors) merge key by key instead of being replaced.
        """
        current = asdict(self.get(user_id))
        known = {f.name for f in fields(UserPreferences)}

        for key, value in updates.items():
            if key not in known or key in _READ_ONLY:
                raise ValidationError(f"Unknown or read-only preference '{key}'")
            if isinstance(current[key], dict):
                if not isinstance(value, dict):
                    raise ValidationError(f"'{key}' must be a mapping")
                current[key] = {**current[key], **value}
            else:
                current[key] = value

        prefs = UserPreferences(**current)
        self.validate(prefs)
        try:
            saved = self.repo.save_preferences(prefs)
        except sqlite3.Error as exc:
            raise UpstreamIOError("Failed to save preferences") from exc
        logger.info("Updated preferences for user %d: %s", user_id, sorted(updates))
        return saved

    @staticmethod
    def validate(prefs: UserPreferences) -> None:
        for name in ("preferred_break_duration", "max_consecutive_study_hours",
                     "urgent_threshold", "high_threshold", "medium_threshold",
                     "max_daily_tasks", "max_daily_study_hours"):
            value = getattr(prefs, name)
            if not _is_number(value) or value < 0:
                raise ValidationError(f"'{name}' must be a non-negative number")

        for name, weights, allowed in (
            ("difficulty_weights", prefs.difficulty_weights, CATEGORIES),
            ("balance_factors", prefs.balance_factors, BALANCE_KEYS),
        ):
            for key, weight in weights.items():
                if key not in allowed:
                    raise ValidationError(f"Unknown key '{key}' in {name}")
                if not _is_number(weight) or weight < 0:
                    raise ValidationError(f"{name}.{key} must be a non-negative number")

        start, end = prefs.optimal_study_start, prefs.optimal_study_end
        if not (isinstance(start, int) and isinstance(end, int)) or not 0 <= start < end <= 24:
            raise ValidationError("Study hours must be whole hours with 0 <= start < end <= 24")

        if not prefs.urgent_threshold <= prefs.high_threshold <= prefs.medium_threshold:
            raise ValidationError("Thresholds must satisfy urgent <= high <= medium")

        if not isinstance(prefs.weekend_study_preference, bool):
            raise ValidationError("'weekend_study_preference' must be true or false")

        if prefs.learning_style not in LEARNING_STYLES:
            raise ValidationError(f"'learning_style' must be one of {', '.join(LEARNING_STYLES)}")
