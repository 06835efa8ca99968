"""
App configuration — JSON on disk, merged over built-in defaults.

Missing keys fall back to DEFAULT_CONFIG, so old config files keep working
when new options are added.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parent.parent
CONFIG_PATH = ROOT_DIR / "config" / "study_coach.json"

DEFAULT_CONFIG = {
    "db_path": str(ROOT_DIR / "study_coach.db"),
    "log_file": "study_coach.log",
    "log_level": "INFO",
    "history_days": 30,
    "list_limit": 20,
    "auto_generate_max_age_hours": 24,
    "refresh_interval_min": 60,
    "reap_interval_min": 15,
    # False: a failing generator is logged and skipped; True: the run aborts
    "strict_generators": False,
    # 'calendar' or 'positional' (see signals.completion_pattern)
    "weekday_split": "calendar",
}

WEEKDAY_SPLITS = ("calendar", "positional")


def load_config(path: Optional[Path] = None) -> dict:
    path = path or CONFIG_PATH
    merged = DEFAULT_CONFIG.copy()
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                merged.update(json.load(f))
        except (json.JSONDecodeError, OSError):
            logger.warning("Bad config at %s, using defaults.", path)
            return DEFAULT_CONFIG.copy()
    if merged["weekday_split"] not in WEEKDAY_SPLITS:
        logger.warning("Unknown weekday_split %r, using 'calendar'.", merged["weekday_split"])
        merged["weekday_split"] = "calendar"
    return merged


def save_config(config: dict, path: Optional[Path] = None) -> None:
    path = path or CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
