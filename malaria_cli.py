#!/usr/bin/env python3
# malaria_cli.py
# Desktop / headless front-end over the same encrypted store the app uses.
#
#   python malaria_cli.py medicine add Mefloquine --interval 7 --current
#   python malaria_cli.py log yes --date 2024-03-04
#   python malaria_cli.py status

import argparse
import json
import sys
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import List, Optional

import app_config
from app_log import logger
from medicine_db import MedicineDB, get_or_create_key
from pill_stats import PillStats
from registries import FutureEntryError, RegistriesManager
from today_widget import SharedDefaults, TodayWidget, consume_widget_answer

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_USAGE = 2


@dataclass
class Paths:
    db: Path
    key: Path
    tmp: Path
    widget: Path

    @classmethod
    def from_dir(cls, base: Optional[str]) -> "Paths":
        if not base:
            return cls(app_config.DB_PATH, app_config.KEY_PATH, app_config.TMP_DIR,
                       app_config.WIDGET_DEFAULTS_PATH)
        d = Path(base)
        d.mkdir(parents=True, exist_ok=True)
        return cls(d / app_config.DB_PATH.name, d / app_config.KEY_PATH.name, d / "tmp",
                   d / app_config.WIDGET_DEFAULTS_PATH.name)


def _day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from None


def _yes_no(value: str) -> bool:
    v = value.strip().lower()
    if v in ("yes", "y", "true", "1"):
        return True
    if v in ("no", "n", "false", "0"):
        return False
    raise argparse.ArgumentTypeError(f"expected yes or no, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="malaria", description="Malaria pill reminder")
    p.add_argument("--data-dir", default="", help="Store directory (defaults to the app data dir).")
    sub = p.add_subparsers(dest="command", required=True)

    med = sub.add_parser("medicine", help="Manage tracked medicines.")
    med_sub = med.add_subparsers(dest="action", required=True)
    add = med_sub.add_parser("add")
    add.add_argument("name")
    add.add_argument("--interval", type=int, default=app_config.DEFAULT_INTERVAL_DAYS,
                     help="Days between doses (1 = daily, 7 = weekly).")
    add.add_argument("--notify-at", default=app_config.DEFAULT_NOTIFICATION_TIME, help="Reminder time HH:MM.")
    add.add_argument("--current", action="store_true", help="Start tracking this medicine.")
    use = med_sub.add_parser("use")
    use.add_argument("name")
    med_sub.add_parser("list")

    log = sub.add_parser("log", help="Log whether the pill was taken.")
    log.add_argument("answer", type=_yes_no)
    log.add_argument("--date", type=_day, default=None)
    log.add_argument("--overwrite", action="store_true", help="Replace a conflicting entry.")

    status = sub.add_parser("status", help="Period status and stats for the current medicine.")
    status.add_argument("--date", type=_day, default=None)

    hist = sub.add_parser("history", help="Logged entries, most recent first.")
    hist.add_argument("--limit", type=int, default=30)

    widget = sub.add_parser("widget", help="Answer or sync the today widget.")
    widget.add_argument("action", choices=["yes", "no", "sync"])
    return p


def _current_manager(db: MedicineDB) -> RegistriesManager:
    medicine = db.get_current()
    if medicine is None:
        raise LookupError("no current medicine; run 'medicine add NAME --current' first")
    return RegistriesManager(medicine, db=db)


def _cmd_medicine(a, db: MedicineDB) -> int:
    if a.action == "add":
        med = db.register_medicine(a.name, a.interval, notification_time=a.notify_at, is_current=a.current)
        print(f"registered {med.name} every {med.interval} day(s)")
    elif a.action == "use":
        med = db.set_current(a.name)
        print(f"now tracking {med.name}")
    else:
        for med in db.get_medicines():
            mark = "*" if med.is_current else " "
            print(f"{mark} {med.name}  every {med.interval}d  at {med.notification_time or '-'}")
    return EXIT_OK


def _cmd_log(a, db: MedicineDB) -> int:
    manager = _current_manager(db)
    day = a.date or manager.today()
    result = manager.add_registry(day, a.answer, modify_entry=a.overwrite)
    if result.added:
        print(f"logged {'taken' if a.answer else 'not taken'} on {day.isoformat()}")
        return EXIT_OK
    print(f"not logged: an entry already covers {day.isoformat()} (use --overwrite to replace it)")
    return EXIT_REJECTED


def _cmd_status(a, db: MedicineDB) -> int:
    manager = _current_manager(db)
    stats = PillStats(manager)
    day = a.date or manager.today()
    limits = manager.get_limits()
    last = manager.last_pill_date()
    nxt = stats.next_pill_date()
    report = {
        "medicine": manager.medicine.name,
        "interval": manager.medicine.interval,
        "date": day.isoformat(),
        "status": manager.period_status(day).value,
        "due": stats.is_pill_due(day),
        "last_pill": last.isoformat() if last else None,
        "next_pill": nxt.isoformat() if nxt else None,
        "streak": stats.pill_streak(day),
        "adherence": round(stats.pill_adherence(limits[0].date, day), 4) if limits else 0.0,
    }
    print(json.dumps(report, indent=2))
    return EXIT_OK


def _cmd_history(a, db: MedicineDB) -> int:
    manager = _current_manager(db)
    for r in manager.get_registries()[:max(0, a.limit)]:
        print(f"{r.date.isoformat()}  {'taken' if r.took_medicine else 'not taken'}")
    return EXIT_OK


def _cmd_widget(a, db: MedicineDB, defaults: SharedDefaults) -> int:
    if a.action == "yes":
        TodayWidget(defaults).yes_pressed()
        return EXIT_OK
    if a.action == "no":
        TodayWidget(defaults).no_pressed()
        return EXIT_OK
    result = consume_widget_answer(defaults, _current_manager(db))
    if result is None:
        print("no pending widget answer")
        return EXIT_OK
    return EXIT_OK if result.added else EXIT_REJECTED


def main(argv: Optional[List[str]] = None) -> int:
    a = build_parser().parse_args(argv)
    paths = Paths.from_dir(a.data_dir)
    try:
        db = MedicineDB(get_or_create_key(paths.key), db_path=paths.db, tmp_dir=paths.tmp)
        if a.command == "medicine":
            return _cmd_medicine(a, db)
        if a.command == "log":
            return _cmd_log(a, db)
        if a.command == "status":
            return _cmd_status(a, db)
        if a.command == "history":
            return _cmd_history(a, db)
        return _cmd_widget(a, db, SharedDefaults(paths.widget))
    except FutureEntryError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_REJECTED
    except (LookupError, ValueError) as e:
        logger.warning(f"cli: {e}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main())
