"""
Refresh Service — background regeneration and expiry reaping.

Two timers: one periodically runs auto_generate() for every known user (only
stale batches are rebuilt), the other deletes expired rows. Reads already
filter expired rows, so the reaper is housekeeping, not a correctness step.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from PySide6.QtCore import QTimer

from src.data.models import Recommendation
from src.data.repository import Repository

from .errors import StudyCoachError
from .recommendation_service import RecommendationService

logger = logging.getLogger(__name__)

# Default intervals (minutes), overridden by config
DEFAULT_REFRESH_INTERVAL = 60
DEFAULT_REAP_INTERVAL = 15


class RefreshService:
    """
    Periodic auto-generation and reaping.

    Uses QTimers so callbacks run on the Qt event loop alongside the rest of
    the app.
    """

    def __init__(
        self,
        repo: Repository,
        recommendation_service: RecommendationService,
        on_generated: Optional[Callable[[int, List[Recommendation]], None]] = None,
        on_reaped: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.repo = repo
        self.rec_svc = recommendation_service

        # Callbacks the CLI / UI will set
        self.on_generated = on_generated
        self.on_reaped = on_reaped

        config = recommendation_service.config
        self.refresh_interval = config.get("refresh_interval_min", DEFAULT_REFRESH_INTERVAL)
        self.reap_interval = config.get("reap_interval_min", DEFAULT_REAP_INTERVAL)

        self._refresh_timer = QTimer()
        self._refresh_timer.timeout.connect(self.refresh_all)

        self._reap_timer = QTimer()
        self._reap_timer.timeout.connect(self.reap)

    # ── Public API ──────────────────────────────────────────────────────────

    def start(self) -> None:
        self._refresh_timer.start(int(self.refresh_interval * 60 * 1000))
        self._reap_timer.start(int(self.reap_interval * 60 * 1000))
        logger.info("Refresh every %.0f min, reap every %.0f min",
                    self.refresh_interval, self.reap_interval)

    def stop(self) -> None:
        self._refresh_timer.stop()
        self._reap_timer.stop()

    def is_running(self) -> bool:
        return self._refresh_timer.isActive()

    def update_intervals(
        self, refresh_min: Optional[float] = None, reap_min: Optional[float] = None
    ) -> None:
        if refresh_min is not None:
            self.refresh_interval = refresh_min
        if reap_min is not None:
            self.reap_interval = reap_min
        if self.is_running():
            self.stop()
            self.start()

    # ── Timer callbacks ─────────────────────────────────────────────────────

    def refresh_all(self) -> int:
        """Auto-generate for every user. One user's failure doesn't stop the rest."""
        regenerated = 0
        for user_id in self.repo.list_user_ids():
            try:
                generated, recs = self.rec_svc.auto_generate(user_id)
            except StudyCoachError as exc:
                logger.error("Auto-generate failed for user %d: %s", user_id, exc.to_dict())
                continue
            if generated:
                regenerated += 1
                if self.on_generated:
                    self.on_generated(user_id, recs)
        logger.info("Refresh pass: %d user(s) regenerated", regenerated)
        return regenerated

    def reap(self) -> int:
        count = self.rec_svc.reap_expired()
        if self.on_reaped:
            self.on_reaped(count)
        return count


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Keeps recommendations fresh without anyone clicking "generate": a timer
#   rebuilds stale batches, another cleans up expired rows.
#
# Key design decisions:
#   - QTimer (PySide6) so callbacks run on the Qt event loop; `main.py watch`
#     runs a QCoreApplication, a desktop shell would use its own QApplication.
#   - Timer callbacks are plain public methods, so tests call refresh_all() /
#     reap() directly instead of waiting on real timers.
#   - auto_generate() checks batch age, so a frequent timer is cheap.
