"""
StudyCoach — study recommendations from tasks, analytics and schedule.
Entry point for the command line.
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List

# Ensure src is importable
sys.path.insert(0, str(Path(__file__).resolve().parent))

from src.config import load_config
from src.data.database import Database
from src.data.recommendation_store import RecommendationStore
from src.data.repository import Repository
from src.services.analytics_service import AnalyticsService
from src.services.errors import NotFoundError, StudyCoachError, ValidationError
from src.services.preferences_service import PreferencesService
from src.services.recommendation_service import RecommendationService


def setup_logging(config: dict) -> None:
    logging.basicConfig(
        level=getattr(logging, str(config["log_level"]).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(config["log_file"], encoding="utf-8"),
        ],
    )


def _dump(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="study-coach", description=__doc__)
    parser.add_argument("--user", type=int, required=True, help="user id")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("generate", help="regenerate recommendations")
    lst = sub.add_parser("list", help="show active recommendations")
    lst.add_argument("--type")
    lst.add_argument("--priority")
    for name in ("apply", "dismiss"):
        p = sub.add_parser(name, help=f"{name} a recommendation")
        p.add_argument("rec_id", type=int)
    sub.add_parser("stats", help="recommendation statistics")
    sub.add_parser("insights", help="personalized insights")
    sub.add_parser("watch", help="keep recommendations fresh in the background")

    prefs = sub.add_parser("prefs", help="show or change study preferences")
    prefs_sub = prefs.add_subparsers(dest="prefs_command", required=True)
    prefs_sub.add_parser("show")
    prefs_set = prefs_sub.add_parser("set", help="e.g. max_daily_tasks=4 balance_factors.deadline=0.5")
    prefs_set.add_argument("assignments", nargs="+", metavar="KEY=VALUE")

    record = sub.add_parser("record", help="log a task or pomodoro event for today")
    record.add_argument("event", choices=("created", "completed", "pomodoro"))
    record.add_argument("--task", type=int, help="task id (completed)")
    record.add_argument("--minutes", type=float, default=25, help="work minutes (pomodoro)")
    return parser


def parse_assignments(assignments: List[str]) -> Dict[str, Any]:
    """['a=1', 'b.c=2'] -> {'a': 1, 'b': {'c': 2}}. Values are JSON, else plain text."""
    updates: Dict[str, Any] = {}
    for item in assignments:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise ValidationError(f"Expected KEY=VALUE, got '{item}'")
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            value = raw
        if "." in key:
            field_name, sub_key = key.split(".", 1)
            nested = updates.setdefault(field_name, {})
            if not isinstance(nested, dict):
                raise ValidationError(f"'{field_name}' set both directly and by key")
            nested[sub_key] = value
        else:
            updates[key] = value
    return updates


def _record(args: argparse.Namespace, analytics: AnalyticsService, repo: Repository):
    if args.event == "created":
        return analytics.record_task_created(args.user)
    if args.event == "pomodoro":
        return analytics.record_pomodoro(args.user, args.minutes)

    if args.task is None:
        raise ValidationError("'record completed' needs --task")
    task = repo.get_task(args.task, args.user)
    if task is None:
        raise NotFoundError("Task not found")
    if task.status != "completed":
        task.status = "completed"
        repo.update_task(task)
    return analytics.record_task_completed(args.user, task)


def run(args: argparse.Namespace, service: RecommendationService, repo: Repository) -> int:
    if args.command == "prefs":
        preferences = PreferencesService(repo)
        if args.prefs_command == "set":
            prefs = preferences.update(args.user, parse_assignments(args.assignments))
        else:
            prefs = preferences.get(args.user)
        _dump(asdict(prefs))
    elif args.command == "record":
        _dump(asdict(_record(args, AnalyticsService(repo, clock=service.clock), repo)))
    elif args.command == "generate":
        _dump([asdict(r) for r in service.generate(args.user)])
    elif args.command == "list":
        _dump([asdict(r) for r in service.list_active(args.user, args.type, args.priority)])
    elif args.command == "apply":
        _dump(service.apply(args.user, args.rec_id))
    elif args.command == "dismiss":
        _dump(service.dismiss(args.user, args.rec_id))
    elif args.command == "stats":
        _dump(service.get_stats(args.user))
    elif args.command == "insights":
        insights = service.get_insights(args.user)
        insights["recentRecommendations"] = [asdict(r) for r in insights["recentRecommendations"]]
        insights["appliedRecommendations"] = [asdict(r) for r in insights["appliedRecommendations"]]
        _dump(insights)
    elif args.command == "watch":
        from PySide6.QtCore import QCoreApplication
        from src.services.refresh_service import RefreshService

        app = QCoreApplication(sys.argv)
        refresher = RefreshService(repo, service)
        refresher.refresh_all()
        refresher.start()
        return app.exec()
    return 0


def main() -> None:
    config = load_config()
    setup_logging(config)
    logger = logging.getLogger(__name__)

    args = build_parser().parse_args()
    db = Database(Path(config["db_path"]))
    conn = db.connect()
    repo = Repository(conn)
    service = RecommendationService(repo, RecommendationStore(conn), config=config)

    try:
        exit_code = run(args, service, repo)
    except StudyCoachError as exc:
        logger.error("%s failed: %s", args.command, exc.message)
        _dump(exc.to_dict())
        exit_code = 1
    finally:
        db.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
