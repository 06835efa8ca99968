"""
Seed Data Generator — creates realistic fake data for development and testing.

Run: python scripts/seed_data.py [user_id]
"""

import random
import sys
from datetime import datetime, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.data.database import Database
from src.data.models import DailyAnalytics, ScheduleEntry, Task
from src.data.repository import Repository


def seed(user_id: int = 1, history_days: int = 30) -> None:
    db = Database()
    db.connect()
    repo = Repository(db.conn)
    now = datetime.now()

    # ── Tasks ───────────────────────────────────────────────────────────
    tasks_by_category = {
        "assignment": ["Linear Algebra HW 4", "CS 440 Lab Report", "Essay Draft"],
        "exam": ["Midterm Review: Physics", "Final Prep: Statistics"],
        "project": ["Capstone Prototype", "Group Presentation Slides"],
        "personal": ["Organize Notes", "Plan Next Week"],
    }
    task_ids = []
    for category, titles in tasks_by_category.items():
        for title in titles:
            task = repo.create_task(Task(
                user_id=user_id,
                title=title,
                deadline=now + timedelta(hours=random.randint(2, 24 * 12)),
                priority=random.choice(["low", "medium", "high", "urgent"]),
                status=random.choice(["pending"] * 4 + ["in-progress", "completed"]),
                category=category,
                estimated_time=random.choice([30, 45, 60, 90, 120]),
            ))
            task_ids.append(task.id)

    # ── Analytics history ──────────────────────────────────────────────
    for offset in range(history_days):
        day = now.date() - timedelta(days=offset)
        created = random.randint(1, 6)
        completed = random.randint(0, created)
        repo.upsert_analytics(DailyAnalytics(
            user_id=user_id,
            date=day,
            tasks_created=created,
            tasks_completed=completed,
            total_work_minutes=random.randint(30, 240),
            pomodoro_sessions=random.randint(0, 8),
            productivity_score=round(completed / created * 100),
        ))

    # ── Schedule ───────────────────────────────────────────────────────
    for offset in range(5):
        day = now.date() + timedelta(days=offset)
        start_hour = random.randint(9, 14)
        repo.create_schedule_entry(ScheduleEntry(
            user_id=user_id,
            date=day,
            start_time=f"{start_hour:02d}:00",
            end_time=f"{start_hour + 1:02d}:30",
            title="Study block",
            task_id=random.choice(task_ids + [None]),
        ))

    repo.get_or_create_preferences(user_id)
    db.close()
    print(f"Seeded user {user_id}: {len(task_ids)} tasks, {history_days} days of analytics.")


if __name__ == "__main__":
    seed(int(sys.argv[1]) if len(sys.argv) > 1 else 1)
