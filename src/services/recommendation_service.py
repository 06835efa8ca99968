"""
Recommendation Service — orchestrates generation and the recommendation
lifecycle (list, apply, dismiss, stats).

One generate() run:
    read clock once → fetch snapshot → run every generator → replace the
    user's active batch (staged write + flip) → return the saved batch
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from src.config import DEFAULT_CONFIG
from src.data.models import PRIORITY_RANK, Recommendation
from src.data.recommendation_store import RecommendationStore
from src.data.repository import Repository
from src.ml.generators import GenerationContext, Generator, default_generators

from .apply_handlers import ApplyDispatcher
from .errors import GenerationError, NotFoundError, UpstreamIOError

logger = logging.getLogger(__name__)


@dataclass
class GenerationReport:
    """What the last generate() run produced and which generators failed."""
    user_id: int
    now: datetime
    counts: Dict[str, int] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class RecommendationService:
    """
    Stateless apart from its collaborators: repositories, generators, the
    apply dispatcher and the clock are all injected.
    """

    def __init__(
        self,
        repo: Repository,
        store: RecommendationStore,
        generators: Optional[List[Generator]] = None,
        dispatcher: Optional[ApplyDispatcher] = None,
        clock: Callable[[], datetime] = datetime.now,
        config: Optional[dict] = None,
    ) -> None:
        self.repo = repo
        self.store = store
        self.generators = generators if generators is not None else default_generators()
        self.dispatcher = dispatcher or ApplyDispatcher()
        self.clock = clock
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.last_report: Optional[GenerationReport] = None

        # one writer per user at a time; different users never block each other
        self._locks: Dict[int, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    # ── Generation ──────────────────────────────────────────────────────────

    def generate(self, user_id: int) -> List[Recommendation]:
        """Regenerate the user's active set. Raises UpstreamIOError on I/O failure."""
        return self._generate(user_id)

    def _generate(self, user_id: int, now: Optional[datetime] = None) -> List[Recommendation]:
        with self._user_lock(user_id):
            if now is None:
                now = self.clock()
            context = self._load_context(user_id, now)
            recommendations, report = self._run_generators(context)
            self.last_report = report
            saved = self._io(
                "save recommendations",
                lambda: self.store.replace_active(user_id, recommendations, now),
            )
        logger.info("Generated %d recommendations for user %d", len(saved), user_id)
        return saved

    def auto_generate(
        self, user_id: int, max_age_hours: Optional[float] = None
    ) -> Tuple[bool, List[Recommendation]]:
        """Regenerate only when the active batch is missing or older than the limit."""
        if max_age_hours is None:
            max_age_hours = self.config["auto_generate_max_age_hours"]
        batch = self._io("read active batch", lambda: self.store.get_active_batch(user_id))
        now = self.clock()
        if batch is not None and now - batch.generated_at <= timedelta(hours=max_age_hours):
            return False, []
        return True, self._generate(user_id, now)

    def _load_context(self, user_id: int, now: datetime) -> GenerationContext:
        since = now.date() - timedelta(days=self.config["history_days"] - 1)
        return GenerationContext(
            user_id=user_id,
            tasks=self._io("fetch tasks", lambda: self.repo.list_tasks(user_id)),
            analytics=self._io("fetch analytics", lambda: self.repo.list_analytics(user_id, since)),
            schedule=self._io("fetch schedule", lambda: self.repo.list_schedule(user_id)),
            preferences=self._io(
                "fetch preferences", lambda: self.repo.get_or_create_preferences(user_id)
            ),
            now=now,
            weekday_split=self.config["weekday_split"],
        )

    def _run_generators(
        self, context: GenerationContext
    ) -> Tuple[List[Recommendation], GenerationReport]:
        report = GenerationReport(user_id=context.user_id, now=context.now)
        results: List[Recommendation] = []
        for generator in self.generators:
            try:
                produced = generator.generate(context)
            except Exception as exc:
                if self.config["strict_generators"]:
                    raise GenerationError(
                        f"Generator '{generator.name}' failed: {exc}"
                    ) from exc
                logger.exception("Generator %s failed for user %d; continuing without it",
                                 generator.name, context.user_id)
                report.failures[generator.name] = str(exc)
                continue
            report.counts[generator.name] = len(produced)
            results.extend(produced)
        return results, report

    # ── Reads ───────────────────────────────────────────────────────────────

    def list_active(
        self,
        user_id: int,
        rec_type: Optional[str] = None,
        priority: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Recommendation]:
        """Visible recommendations: priority tier, then confidence, then newest first."""
        now = self.clock()
        recs = self._io(
            "list recommendations",
            lambda: self.store.list_active(user_id, now, rec_type, priority),
        )
        recs.sort(key=lambda r: (
            -PRIORITY_RANK.get(r.priority, 0),
            -r.confidence,
            -(r.created_at.timestamp() if r.created_at else 0),
            -(r.id or 0),
        ))
        return recs[: limit or self.config["list_limit"]]

    def get_stats(self, user_id: int) -> dict:
        now = self.clock()
        every = self._io("read recommendations", lambda: self.store.list_all(user_id))
        active = self._io("list recommendations", lambda: self.store.list_active(user_id, now))

        by_type: Dict[str, List[int]] = defaultdict(list)
        for rec in active:
            by_type[rec.type].append(rec.confidence)

        return {
            "total": len(every),
            "active": len(active),
            "applied": sum(1 for r in every if r.is_applied),
            "typeDistribution": {
                t: {"count": len(c), "avgConfidence": round(sum(c) / len(c), 1)}
                for t, c in sorted(by_type.items())
            },
            "priorityDistribution": dict(sorted(Counter(r.priority for r in active).items())),
        }

    def get_insights(self, user_id: int) -> dict:
        recent = self.list_active(user_id, limit=5)
        applied = self._io("read applied", lambda: self.store.list_applied(user_id, 10))

        type_counts = Counter(r.type for r in recent)
        most_common = type_counts.most_common(1)[0][0] if type_counts else "none"
        total_seen = len(applied) + len(recent)

        if not recent:
            suggestions = ["Generate your first AI recommendations to get personalized insights"]
        elif not applied:
            suggestions = ["Try applying some recommendations to improve your productivity"]
        else:
            suggestions = [
                "Keep using AI recommendations to optimize your study routine",
                "Regular recommendation updates help maintain peak performance",
            ]

        return {
            "totalRecommendations": len(recent),
            "applicationRate": round(len(applied) / total_seen * 100) if applied else 0,
            "mostCommonType": most_common,
            "averageConfidence": (
                round(sum(r.confidence for r in recent) / len(recent)) if recent else 0
            ),
            "suggestions": suggestions,
            "recentRecommendations": recent,
            "appliedRecommendations": applied[:3],
        }

    # ── Lifecycle transitions ───────────────────────────────────────────────

    def apply(self, user_id: int, rec_id: int) -> dict:
        """
        Run the type's handler, then flag the row applied. A second apply is a
        no-op; a handler that raises or reports failure leaves the flag unset.
        """
        with self._user_lock(user_id):
            rec = self._owned(user_id, rec_id)
            if rec.is_applied:
                return {
                    "success": True,
                    "action": "already_applied",
                    "message": "Recommendation was already applied",
                    "recommendationId": rec.id,
                }
            now = self.clock()
            result = self._io("apply recommendation",
                              lambda: self.dispatcher.dispatch(rec, self.repo, now))
            if result.get("success"):
                self._io("mark applied", lambda: self.store.mark_applied(rec.id, now))
        logger.info("User %d applied recommendation %d (%s): %s",
                    user_id, rec.id, rec.type, result.get("action"))
        return {**result, "recommendationId": rec.id}

    def dismiss(self, user_id: int, rec_id: int) -> dict:
        rec = self._owned(user_id, rec_id)
        if rec.is_active:
            self._io("dismiss recommendation", lambda: self.store.deactivate(rec.id))
            logger.info("User %d dismissed recommendation %d", user_id, rec.id)
        return {"success": True, "message": "Recommendation dismissed"}

    def reap_expired(self) -> int:
        now = self.clock()
        return self._io("reap expired", lambda: self.store.reap_expired(now))

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _owned(self, user_id: int, rec_id: int) -> Recommendation:
        rec = self._io("read recommendation", lambda: self.store.get_for_user(rec_id, user_id))
        if rec is None:
            raise NotFoundError("Recommendation not found")
        return rec

    def _user_lock(self, user_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks[user_id]

    @staticmethod
    def _io(what: str, call: Callable):
        try:
            return call()
        except sqlite3.Error as exc:
            logger.error("Storage failure during %s: %s", what, exc)
            raise UpstreamIOError(f"Failed to {what}") from exc


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The orchestrator. It is the only component that reads the clock or talks
#   to storage during generation; generators get a frozen snapshot.
#
# Key design decisions:
#   - Partial success: one broken generator is logged and recorded in
#     last_report, the other five still contribute. strict_generators=True
#     in config flips this to all-or-nothing.
#   - Per-user lock around generate(): two concurrent runs for the same user
#     serialize, so the flip always lands on the newest batch and exactly one
#     batch is active. Storage-level staging covers crash safety.
#   - apply() dispatches first and flags the row only on success, so a
#     failed handler can be retried and a repeated apply books nothing twice.
#   - Ownership checks go through store.get_for_user(), so "not yours" and
#     "doesn't exist" are the same NotFoundError.
#
# Data flow:
#   CLI / HTTP → generate(user) → Repository reads → generators →
#   RecommendationStore.replace_active → saved Recommendations back
