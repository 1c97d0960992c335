# today_widget.py
# Quick yes/no answer for today's pill, shared with the app through a small
# key/value file (the app-group defaults of the home-screen widget).

import json
from datetime import date
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, Optional

import app_config
from app_log import logger
from medicine_db import _atomic_write_bytes
from registries import AddResult, RegistriesManager

_DEFAULTS_LOCK = RLock()

FULL_DATE_TEXT_FORMAT = "{d.month}/{d.day}/{d.year}"
MINOR_DATE_TEXT_FORMAT = "%A"


class SharedDefaults:
    def __init__(self, path: Optional[Path] = None):
        self.path = path or app_config.WIDGET_DEFAULTS_PATH

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError:
            logger.warning(f"widget defaults unreadable; resetting {self.path.name}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]):
        _atomic_write_bytes(self.path, json.dumps(data, sort_keys=True).encode("utf-8"))

    def get(self, key: str, default=None):
        with _DEFAULTS_LOCK:
            return self._read().get(key, default)

    def set(self, key: str, value):
        with _DEFAULTS_LOCK:
            data = self._read()
            data[key] = value
            self._write(data)

    def update(self, values: Dict[str, Any]):
        with _DEFAULTS_LOCK:
            data = self._read()
            data.update(values)
            self._write(data)

    def remove(self, *keys: str):
        with _DEFAULTS_LOCK:
            data = self._read()
            for k in keys:
                data.pop(k, None)
            self._write(data)


class TodayWidget:
    def __init__(self, defaults: Optional[SharedDefaults] = None, today: Callable[[], date] = date.today):
        self.defaults = defaults or SharedDefaults()
        self._today = today

    def day_label(self) -> str:
        return self._today().strftime(MINOR_DATE_TEXT_FORMAT)

    def date_label(self) -> str:
        return FULL_DATE_TEXT_FORMAT.format(d=self._today())

    @property
    def has_content(self) -> bool:
        return self.defaults.get(app_config.WIDGET_DISMISSED_KEY) != self._today().isoformat()

    def yes_pressed(self):
        self._answer(True)

    def no_pressed(self):
        self._answer(False)

    def pending_answer(self) -> Optional[bool]:
        """Today's unanswered-by-the-app widget answer, if any."""
        return pending_answer(self.defaults, self._today())

    def _answer(self, took: bool):
        today = self._today()
        self.defaults.update({
            app_config.WIDGET_ANSWER_KEY: took,
            app_config.WIDGET_DATE_KEY: today.isoformat(),
            app_config.WIDGET_DISMISSED_KEY: today.isoformat(),
        })
        logger.info(f"widget answer took={took} day={today.isoformat()}")


def pending_answer(defaults: SharedDefaults, today: date) -> Optional[bool]:
    answer = defaults.get(app_config.WIDGET_ANSWER_KEY)
    day = defaults.get(app_config.WIDGET_DATE_KEY)
    if answer is None or day != today.isoformat():
        return None
    return bool(answer)


def consume_widget_answer(defaults: SharedDefaults, manager: RegistriesManager) -> Optional[AddResult]:
    """
    Turn a pending widget answer into a registry entry.

    Answers from a previous day are discarded. An answer replaces an entry
    already logged today, but never an earlier taken dose of the period.
    """
    today = manager.today()
    answer = pending_answer(defaults, today)
    stale = defaults.get(app_config.WIDGET_DATE_KEY)
    if answer is None:
        if stale is not None:
            logger.info(f"discarding stale widget answer day={stale}")
            defaults.remove(app_config.WIDGET_ANSWER_KEY, app_config.WIDGET_DATE_KEY)
        return None

    try:
        result = manager.add_registry(today, answer)
        if not result.added and manager.find_registry(today) is not None:
            result = manager.add_registry(today, answer, modify_entry=True)
    finally:
        defaults.remove(app_config.WIDGET_ANSWER_KEY, app_config.WIDGET_DATE_KEY)
    logger.info(f"widget answer applied took={answer} added={result.added}")
    return result
