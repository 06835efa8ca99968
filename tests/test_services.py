"""Unit tests for the service layer."""

import json
import sqlite3
import threading
import pytest
from datetime import datetime, timedelta
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.config import DEFAULT_CONFIG, load_config, save_config
from src.data.database import connect_memory
from src.data.models import DailyAnalytics, Recommendation, Task
from src.data.recommendation_store import RecommendationStore
from src.data.repository import Repository
from src.ml.generators import DeadlineAlertGenerator, Generator
from src.services.analytics_service import AnalyticsService
from src.services.apply_handlers import ApplyDispatcher, apply_task_priority
from src.services.errors import (
    GenerationError,
    NotFoundError,
    UpstreamIOError,
    ValidationError,
)
from src.services.preferences_service import PreferencesService
from src.services.recommendation_service import RecommendationService

NOW = datetime(2026, 3, 4, 8, 0)  # a Wednesday


class FakeClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now
        self.calls = 0

    def __call__(self) -> datetime:
        self.calls += 1
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class BoomGenerator(Generator):
    name = "boom"
    type = "pattern_suggestion"

    def generate(self, context):
        raise RuntimeError("kaboom")


@pytest.fixture
def conn():
    connection = connect_memory()
    yield connection
    connection.close()


@pytest.fixture
def repo(conn):
    return Repository(conn)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def svc(repo, conn, clock):
    return RecommendationService(repo, RecommendationStore(conn), clock=clock)


def _add_task(repo, user_id=1, hours=48, **kwargs):
    kwargs.setdefault("title", f"Task due in {hours}h")
    return repo.create_task(Task(user_id=user_id, deadline=NOW + timedelta(hours=hours), **kwargs))


def _add_history(repo, user_id=1, scores=(80,) * 10):
    for offset, score in enumerate(scores):
        repo.upsert_analytics(DailyAnalytics(
            user_id=user_id, date=NOW.date() - timedelta(days=offset),
            tasks_created=4, tasks_completed=3, total_work_minutes=120,
            productivity_score=score,
        ))


class TestGenerate:
    def test_no_data_no_recommendations(self, svc, conn):
        assert svc.generate(1) == []
        assert RecommendationStore(conn).get_active_batch(1).size == 0
        assert svc.last_report.ok

    def test_urgent_deadline_surfaces_first(self, svc, repo):
        task = _add_task(repo, hours=2, title="Lab report")
        svc.generate(1)

        alerts = svc.list_active(1, rec_type="deadline_alert")
        assert len(alerts) == 1
        assert alerts[0].priority == "urgent"
        assert alerts[0].confidence == 95
        assert alerts[0].expires_at == task.deadline
        assert svc.list_active(1)[0].id == alerts[0].id

    def test_reads_clock_once(self, svc, repo, clock):
        _add_task(repo, hours=30)
        svc.generate(1)
        assert clock.calls == 1

    def test_regenerate_replaces_everything(self, svc, repo):
        for hours in (5, 30, 60):
            _add_task(repo, hours=hours)
        first = svc.generate(1)
        second = svc.generate(1)

        visible = svc.list_active(1)
        assert {r.id for r in visible} == {r.id for r in second}
        assert not {r.id for r in visible} & {r.id for r in first}
        assert len({r.batch_id for r in visible}) == 1

    def test_same_snapshot_same_output(self, svc, repo):
        for hours in (3, 20, 50, 90):
            _add_task(repo, hours=hours, category="exam")
        _add_history(repo)

        def fingerprint(recs):
            return [(r.type, r.title, r.description, r.priority, r.confidence,
                     r.data, r.expires_at) for r in recs]

        assert fingerprint(svc.generate(1)) == fingerprint(svc.generate(1))

    def test_concurrent_runs_leave_one_batch(self, svc, repo):
        for hours in (5, 30, 60):
            _add_task(repo, hours=hours)
        threads = [threading.Thread(target=svc.generate, args=(1,)) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        visible = svc.list_active(1)
        assert len({r.batch_id for r in visible}) == 1
        assert len(visible) == svc.store.get_active_batch(1).size

    def test_failing_generator_is_skipped(self, repo, conn, clock):
        _add_task(repo, hours=2)
        svc = RecommendationService(repo, RecommendationStore(conn), clock=clock,
                                    generators=[BoomGenerator(), DeadlineAlertGenerator()])
        recs = svc.generate(1)
        assert [r.type for r in recs] == ["deadline_alert"]
        assert svc.last_report.failures == {"boom": "kaboom"}
        assert svc.last_report.counts == {"deadline_alert": 1}

    def test_strict_mode_keeps_previous_set(self, repo, conn, clock):
        _add_task(repo, hours=2)
        store = RecommendationStore(conn)
        lenient = RecommendationService(repo, store, clock=clock,
                                        generators=[DeadlineAlertGenerator()])
        before = lenient.generate(1)

        strict = RecommendationService(
            repo, store, clock=clock, config={"strict_generators": True},
            generators=[DeadlineAlertGenerator(), BoomGenerator()],
        )
        with pytest.raises(GenerationError) as info:
            strict.generate(1)
        assert info.value.code == "generation_failed"
        assert [r.id for r in strict.list_active(1)] == [r.id for r in before]

    def test_storage_failure_is_upstream_io(self, svc, conn):
        conn.close()
        with pytest.raises(UpstreamIOError) as info:
            svc.generate(1)
        assert info.value.to_dict()["error"] == "upstream_io"


class TestAutoGenerate:
    def test_only_when_stale(self, svc, repo, clock):
        _add_task(repo, hours=30)
        generated, recs = svc.auto_generate(1)
        assert generated and recs

        assert svc.auto_generate(1) == (False, [])

        clock.advance(hours=25)
        generated, _ = svc.auto_generate(1)
        assert generated

    def test_custom_max_age(self, svc, repo, clock):
        svc.generate(1)
        clock.advance(hours=2)
        assert svc.auto_generate(1, max_age_hours=1)[0] is True

    def test_reads_clock_once_when_regenerating(self, svc, repo, clock):
        _add_task(repo, hours=30)
        generated, recs = svc.auto_generate(1)
        assert generated
        assert clock.calls == 1
        assert recs[0].created_at == clock.now


class TestListing:
    def test_order_and_limit(self, svc, repo):
        for hours in (2, 4, 30, 50, 60):
            _add_task(repo, hours=hours)
        svc.generate(1)
        recs = svc.list_active(1)
        keys = [(-["low", "medium", "high", "urgent"].index(r.priority), -r.confidence)
                for r in recs]
        assert keys == sorted(keys)
        assert len(svc.list_active(1, limit=2)) == 2

    def test_expired_hidden(self, svc, repo, clock):
        _add_task(repo, hours=2)
        svc.generate(1)
        clock.advance(hours=3)
        assert svc.list_active(1, rec_type="deadline_alert") == []

    def test_reap(self, svc, repo, clock):
        _add_task(repo, hours=2)
        svc.generate(1)
        clock.advance(days=8)
        assert svc.reap_expired() > 0
        assert svc.store.list_all(1) == []


class TestLifecycle:
    def test_apply_books_focus_block(self, svc, repo):
        task = _add_task(repo, hours=30, title="Physics problem set")
        svc.generate(1)
        rec = svc.list_active(1, rec_type="task_priority")[0]

        result = svc.apply(1, rec.id)
        assert result["success"] is True
        assert result["action"] == "task_prioritized"
        assert result["recommendationId"] == rec.id

        entries = repo.list_schedule(1)
        assert [e.title for e in entries] == ["Focus: Physics problem set"]
        assert entries[0].task_id == task.id
        assert entries[0].date == NOW.date()
        assert entries[0].start_time == "09:00"
        assert svc.store.get_for_user(rec.id, 1).is_applied

    def test_apply_deadline_alert_marks_urgent(self, svc, repo):
        task = _add_task(repo, hours=2, priority="low")
        svc.generate(1)
        alert = svc.list_active(1, rec_type="deadline_alert")[0]
        svc.apply(1, alert.id)
        assert repo.get_task(task.id).priority == "urgent"

    def test_apply_study_time_moves_window(self, svc, repo):
        _add_history(repo)
        svc.generate(1)
        rec = svc.list_active(1, rec_type="study_time")[0]
        svc.apply(1, rec.id)
        prefs = repo.get_preferences(1)
        assert (prefs.optimal_study_start, prefs.optimal_study_end) == (9, 12)

    def test_apply_with_deleted_task(self, svc, repo):
        task = _add_task(repo, hours=30)
        svc.generate(1)
        rec = svc.list_active(1, rec_type="task_priority")[0]
        repo.delete_task(task.id, 1)
        assert svc.apply(1, rec.id)["success"] is False
        assert svc.store.get_for_user(rec.id, 1).is_applied is False

    def test_second_apply_books_nothing(self, svc, repo):
        _add_task(repo, hours=30, title="Physics problem set")
        svc.generate(1)
        rec = svc.list_active(1, rec_type="task_priority")[0]

        assert svc.apply(1, rec.id)["action"] == "task_prioritized"
        again = svc.apply(1, rec.id)
        assert again["success"] is True
        assert again["action"] == "already_applied"
        assert again["recommendationId"] == rec.id
        assert len(repo.list_schedule(1)) == 1

    def test_failing_handler_leaves_row_unapplied(self, repo, conn, clock):
        def broken(rec, repo, now):
            raise sqlite3.OperationalError("database is locked")

        dispatcher = ApplyDispatcher()
        dispatcher.register("task_priority", broken)
        svc = RecommendationService(repo, RecommendationStore(conn), clock=clock,
                                    dispatcher=dispatcher)
        _add_task(repo, hours=30)
        svc.generate(1)
        rec = svc.list_active(1, rec_type="task_priority")[0]

        with pytest.raises(UpstreamIOError):
            svc.apply(1, rec.id)
        assert svc.store.get_for_user(rec.id, 1).is_applied is False

        dispatcher.register("task_priority", apply_task_priority)
        assert svc.apply(1, rec.id)["action"] == "task_prioritized"
        assert svc.store.get_for_user(rec.id, 1).is_applied

    def test_dismiss_is_idempotent(self, svc, repo):
        _add_task(repo, hours=30)
        rec = svc.generate(1)[0]
        assert svc.dismiss(1, rec.id) == {"success": True, "message": "Recommendation dismissed"}
        assert svc.dismiss(1, rec.id)["success"] is True
        assert svc.store.get_for_user(rec.id, 1).is_active is False
        assert rec.id not in {r.id for r in svc.list_active(1)}

    def test_other_users_recommendations_are_not_found(self, svc, repo):
        _add_task(repo, user_id=2, hours=30)
        theirs = svc.generate(2)[0]
        with pytest.raises(NotFoundError):
            svc.apply(1, theirs.id)
        with pytest.raises(NotFoundError):
            svc.dismiss(1, theirs.id)
        untouched = svc.store.get_for_user(theirs.id, 2)
        assert untouched.is_active and not untouched.is_applied

    def test_missing_recommendation(self, svc):
        with pytest.raises(NotFoundError) as info:
            svc.apply(1, 999)
        assert info.value.to_dict() == {"error": "not_found",
                                        "message": "Recommendation not found"}


class TestStatsAndInsights:
    def test_stats(self, svc, repo):
        _add_task(repo, hours=2)
        recs = svc.generate(1)
        svc.apply(1, recs[0].id)

        stats = svc.get_stats(1)
        assert stats["total"] == len(recs)
        assert stats["active"] == len(recs)
        assert stats["applied"] == 1
        assert stats["typeDistribution"]["deadline_alert"] == {"count": 1, "avgConfidence": 95.0}
        assert sum(stats["priorityDistribution"].values()) == len(recs)

    def test_insights_before_any_generation(self, svc):
        insights = svc.get_insights(1)
        assert insights["totalRecommendations"] == 0
        assert insights["mostCommonType"] == "none"
        assert insights["applicationRate"] == 0
        assert "first" in insights["suggestions"][0]

    def test_insights_after_apply(self, svc, repo):
        _add_task(repo, hours=2)
        recs = svc.generate(1)
        assert "applying" in svc.get_insights(1)["suggestions"][0]

        svc.apply(1, recs[0].id)
        insights = svc.get_insights(1)
        assert insights["applicationRate"] > 0
        assert [r.id for r in insights["appliedRecommendations"]] == [recs[0].id]


class TestApplyDispatcher:
    def test_unknown_type_is_noted(self, repo):
        rec = Recommendation(id=1, user_id=1, type="mystery")
        assert ApplyDispatcher().dispatch(rec, repo, NOW)["action"] == "noted"

    def test_register_overrides(self, repo):
        dispatcher = ApplyDispatcher()
        dispatcher.register("workload_balance",
                            lambda rec, repo, now: {"success": True, "action": "custom"})
        rec = Recommendation(id=1, user_id=1, type="workload_balance")
        assert dispatcher.dispatch(rec, repo, NOW)["action"] == "custom"

    def test_rollup_alert_without_task(self, repo):
        rec = Recommendation(id=1, user_id=1, type="deadline_alert", data={"kind": "approaching"})
        result = ApplyDispatcher().dispatch(rec, repo, NOW)
        assert result["success"] is True
        assert result["action"] == "deadline_managed"


class TestPreferencesService:
    def test_dict_fields_merge(self, repo):
        prefs = PreferencesService(repo).update(1, {"difficulty_weights": {"exam": 2.0}})
        assert prefs.difficulty_weights["exam"] == 2.0
        assert prefs.difficulty_weights["project"] == 1.2

    def test_scalar_update(self, repo):
        prefs = PreferencesService(repo).update(1, {"max_daily_tasks": 3,
                                                    "weekend_study_preference": True})
        assert prefs.max_daily_tasks == 3
        assert prefs.weekend_study_preference is True

    @pytest.mark.parametrize("updates", [
        {"balance_factors": {"deadline": -0.1}},
        {"difficulty_weights": {"exam": "hard"}},
        {"difficulty_weights": {"gym": 1.0}},
        {"max_daily_tasks": -1},
        {"optimal_study_start": 18},
        {"urgent_threshold": 5},
        {"weekend_study_preference": "yes"},
        {"learning_style": "osmosis"},
        {"id": 12},
        {"favourite_colour": "blue"},
    ])
    def test_rejects_bad_updates(self, repo, updates):
        svc = PreferencesService(repo)
        with pytest.raises(ValidationError):
            svc.update(1, updates)
        assert svc.get(1).optimal_study_start == 9

    def test_weights_change_ranking(self, svc, repo):
        _add_task(repo, hours=24 * 10, title="Exam", category="exam", priority="low")
        _add_task(repo, hours=24 * 2, title="Chore", category="personal", priority="low")
        PreferencesService(repo).update(1, {"balance_factors": {"difficulty": 1.0, "deadline": 0.0}})
        svc.generate(1)
        top = svc.list_active(1, rec_type="task_priority", priority="urgent")[0]
        assert top.title == "High Priority: Exam"


class TestAnalyticsService:
    def test_productivity_score(self, repo, clock):
        svc = AnalyticsService(repo, clock=clock)
        svc.record_task_created(1)
        svc.record_task_created(1)
        record = svc.record_task_completed(1, Task(priority="high", category="exam"))
        assert record.productivity_score == 50
        assert record.tasks_by_priority["high"] == 1
        assert record.tasks_by_category["exam"] == 1

    def test_pomodoro_accumulates(self, repo, clock):
        svc = AnalyticsService(repo, clock=clock)
        svc.record_pomodoro(1, 25)
        record = svc.record_pomodoro(1, 25)
        assert record.total_work_minutes == 50
        assert record.pomodoro_sessions == 2

    def test_new_day_new_row(self, repo, clock):
        svc = AnalyticsService(repo, clock=clock)
        svc.record_task_created(1)
        clock.advance(days=1)
        svc.record_task_created(1)
        assert len(repo.list_analytics(1)) == 2


class TestRefreshService:
    @pytest.fixture(autouse=True)
    def qt_app(self):
        from PySide6.QtCore import QCoreApplication
        return QCoreApplication.instance() or QCoreApplication([])

    def test_refresh_all_regenerates_stale_users(self, svc, repo):
        from src.services.refresh_service import RefreshService

        _add_task(repo, user_id=1, hours=30)
        _add_task(repo, user_id=2, hours=2)
        seen = []
        refresher = RefreshService(repo, svc, on_generated=lambda uid, recs: seen.append(uid))

        assert refresher.refresh_all() == 2
        assert seen == [1, 2]
        assert refresher.refresh_all() == 0

    def test_one_failing_user_does_not_stop_the_rest(self, repo, conn, clock):
        from src.services.refresh_service import RefreshService

        _add_task(repo, user_id=1, hours=30)
        svc = RecommendationService(repo, RecommendationStore(conn), clock=clock,
                                    config={"strict_generators": True},
                                    generators=[BoomGenerator()])
        assert RefreshService(repo, svc).refresh_all() == 0

    def test_reap_reports_count(self, svc, repo, clock):
        from src.services.refresh_service import RefreshService

        _add_task(repo, hours=2)
        svc.generate(1)
        clock.advance(days=8)
        counts = []
        refresher = RefreshService(repo, svc, on_reaped=counts.append)
        assert refresher.reap() == counts[0]
        assert counts[0] > 0

    def test_timers(self, svc, repo):
        from src.services.refresh_service import RefreshService

        refresher = RefreshService(repo, svc)
        assert refresher.refresh_interval == DEFAULT_CONFIG["refresh_interval_min"]
        refresher.start()
        assert refresher.is_running()
        refresher.update_intervals(refresh_min=5)
        assert refresher.refresh_interval == 5
        assert refresher.is_running()
        refresher.stop()
        assert not refresher.is_running()


class TestConfig:
    def test_defaults_when_missing(self, tmp_path):
        assert load_config(tmp_path / "missing.json") == DEFAULT_CONFIG

    def test_file_overrides_defaults(self, tmp_path):
        path = tmp_path / "cfg" / "coach.json"
        save_config({"history_days": 14, "weekday_split": "positional"}, path)
        config = load_config(path)
        assert config["history_days"] == 14
        assert config["weekday_split"] == "positional"
        assert config["list_limit"] == DEFAULT_CONFIG["list_limit"]

    def test_bad_json_falls_back(self, tmp_path):
        path = tmp_path / "coach.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_config(path) == DEFAULT_CONFIG

    def test_unknown_weekday_split(self, tmp_path):
        path = tmp_path / "coach.json"
        path.write_text(json.dumps({"weekday_split": "lunar"}), encoding="utf-8")
        assert load_config(path)["weekday_split"] == "calendar"
