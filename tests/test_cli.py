"""Tests for the command-line front end."""

import json
import pytest
from datetime import datetime, timedelta
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import main
from src.data.database import connect_memory
from src.data.models import Task
from src.data.recommendation_store import RecommendationStore
from src.data.repository import Repository
from src.services.errors import NotFoundError, ValidationError
from src.services.recommendation_service import RecommendationService

NOW = datetime(2026, 3, 4, 8, 0)


@pytest.fixture
def conn():
    connection = connect_memory()
    yield connection
    connection.close()


@pytest.fixture
def repo(conn):
    return Repository(conn)


@pytest.fixture
def service(repo, conn):
    return RecommendationService(repo, RecommendationStore(conn), clock=lambda: NOW)


@pytest.fixture
def cli(service, repo, capsys):
    """Run one command line for user 1 and return its JSON output."""
    def invoke(*argv):
        args = main.build_parser().parse_args(["--user", "1", *argv])
        assert main.run(args, service, repo) == 0
        return json.loads(capsys.readouterr().out)
    return invoke


class TestParseAssignments:
    def test_values_and_nested_keys(self):
        updates = main.parse_assignments([
            "max_daily_tasks=3", "weekend_study_preference=true",
            "learning_style=visual", "balance_factors.deadline=0.5",
            "balance_factors.priority=0.3",
        ])
        assert updates == {
            "max_daily_tasks": 3,
            "weekend_study_preference": True,
            "learning_style": "visual",
            "balance_factors": {"deadline": 0.5, "priority": 0.3},
        }

    @pytest.mark.parametrize("assignments", [
        ["max_daily_tasks"],
        ["=3"],
        ["balance_factors=1", "balance_factors.deadline=0.5"],
    ])
    def test_malformed(self, assignments):
        with pytest.raises(ValidationError):
            main.parse_assignments(assignments)


class TestPrefsCommand:
    def test_show_defaults(self, cli):
        prefs = cli("prefs", "show")
        assert prefs["user_id"] == 1
        assert (prefs["optimal_study_start"], prefs["optimal_study_end"]) == (9, 17)

    def test_set_merges_and_persists(self, cli, repo):
        prefs = cli("prefs", "set", "max_daily_tasks=3", "balance_factors.deadline=0.5")
        assert prefs["max_daily_tasks"] == 3
        assert prefs["balance_factors"]["deadline"] == 0.5
        assert "priority" in prefs["balance_factors"]

        stored = repo.get_preferences(1)
        assert stored.max_daily_tasks == 3
        assert stored.balance_factors["deadline"] == 0.5

    def test_bad_value_is_rejected(self, service, repo):
        args = main.build_parser().parse_args(
            ["--user", "1", "prefs", "set", "balance_factors.deadline=-1"])
        with pytest.raises(ValidationError):
            main.run(args, service, repo)

    def test_study_window_feeds_generation(self, cli, repo, service):
        cli("prefs", "set", "optimal_study_start=14", "optimal_study_end=16")
        repo.create_task(Task(user_id=1, title="Essay", deadline=NOW + timedelta(hours=30)))
        cli("generate")
        rec = service.list_active(1, rec_type="task_priority")[0]
        assert rec.data["suggestedTimeSlot"] == "14:00 - 16:00"


class TestRecordCommand:
    def test_created_then_completed(self, cli, repo):
        task = repo.create_task(Task(user_id=1, title="Reading", priority="high"))
        cli("record", "created")
        cli("record", "created")
        day = cli("record", "completed", "--task", str(task.id))

        assert day["tasks_completed"] == 1
        assert day["productivity_score"] == 50
        assert day["tasks_by_priority"]["high"] == 1
        assert repo.get_task(task.id).status == "completed"

    def test_pomodoro_minutes(self, cli):
        cli("record", "pomodoro")
        day = cli("record", "pomodoro", "--minutes", "30")
        assert day["pomodoro_sessions"] == 2
        assert day["total_work_minutes"] == 55

    def test_completed_needs_task(self, service, repo):
        args = main.build_parser().parse_args(["--user", "1", "record", "completed"])
        with pytest.raises(ValidationError):
            main.run(args, service, repo)

    def test_other_users_task_is_not_found(self, service, repo):
        task = repo.create_task(Task(user_id=2, title="Not mine"))
        args = main.build_parser().parse_args(
            ["--user", "1", "record", "completed", "--task", str(task.id)])
        with pytest.raises(NotFoundError):
            main.run(args, service, repo)
        assert repo.get_task(task.id).status == "pending"
