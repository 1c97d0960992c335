# registries.py
# Medicine / registry model and the period reconciliation over a medicine's log.

import itertools
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, List, NamedTuple, Optional, Tuple, Union

from app_log import logger

DayLike = Union[date, datetime]

_SEQ = itertools.count(1)

_HM_RE = re.compile(r"^(\d{2}):(\d{2})$")


def as_day(d: DayLike) -> date:
    """Drop the time-of-day part; entries are compared at day granularity."""
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    raise TypeError(f"expected date or datetime, got {type(d).__name__}")


def fmt_day(d: DayLike) -> str:
    return as_day(d).isoformat()


def parse_hm(value: str) -> Tuple[int, int]:
    """Parse a zero-padded ``HH:MM`` notification time."""
    m = _HM_RE.match(str(value).strip())
    if not m:
        raise ValueError(f"invalid notification time: {value!r} (expected HH:MM)")
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"invalid notification time: {value!r} (expected HH:MM)")
    return hour, minute


class FutureEntryError(ValueError):
    """Raised when trying to log an entry after today."""


class PeriodStatus(str, Enum):
    NO_DATA = "no_data"
    TAKEN = "taken"
    NOT_TAKEN = "not_taken"


class PeriodEntries(NamedTuple):
    no_data: bool
    entries: List["Registry"]


class AddResult(NamedTuple):
    added: bool
    conflict: bool


@dataclass
class Registry:
    date: date
    took_medicine: bool
    id: Optional[int] = None
    seq: int = field(default_factory=lambda: next(_SEQ))

    def __post_init__(self):
        self.date = as_day(self.date)
        self.took_medicine = bool(self.took_medicine)

    def sort_key(self) -> Tuple[date, int]:
        return (self.date, self.seq)


@dataclass
class Medicine:
    name: str
    interval: int
    is_current: bool = False
    notification_time: Optional[str] = None
    id: Optional[int] = None
    registries: List[Registry] = field(default_factory=list)

    def __post_init__(self):
        self.name = (self.name or "").strip()
        if not self.name:
            raise ValueError("medicine name is required")
        try:
            self.interval = int(self.interval)
        except (TypeError, ValueError):
            raise ValueError(f"invalid interval: {self.interval!r}") from None
        if self.interval < 1:
            raise ValueError(f"interval must be at least 1 day, got {self.interval}")
        if self.notification_time is not None:
            hour, minute = parse_hm(self.notification_time)
            self.notification_time = f"{hour:02d}:{minute:02d}"


class RegistriesManager:
    """
    Queries and edits the entry log of one medicine.

    Lists passed in as ``registries`` are cached views and must be sorted most
    recent first. When a ``MedicineDB`` is given every change is persisted
    through it; otherwise the medicine is edited in memory only.
    """

    def __init__(self, medicine: Medicine, db=None, today: Callable[[], date] = date.today):
        self.medicine = medicine
        self.db = db
        self._today = today

    def today(self) -> date:
        return as_day(self._today())

    def reload(self) -> None:
        """Re-read the log from the database; other processes may have written to it."""
        if self.db is not None and self.medicine.id is not None:
            self.medicine.registries = self.db.load_registries(self.medicine.id)

    # -------------------------
    # Period queries
    # -------------------------
    def all_registries_in_period(self, at: DayLike, registries: Optional[List[Registry]] = None) -> PeriodEntries:
        """
        Entries belonging to the dosing period that contains ``at``.

        ``no_data`` is True when nothing was logged around ``at`` or when
        ``at`` falls before the first logged day of the period.
        """
        at = as_day(at)
        span = timedelta(days=self.medicine.interval - 1)
        day1, day2 = at - span, at + span

        if registries is not None:
            entries = self.filter(registries, day1, day2)
        else:
            entries = self.get_registries(day1, day2, most_recent_first=True)

        if not entries:
            return PeriodEntries(True, [])

        d1 = max(day1, min(r.date for r in entries))
        date_limit = d1 + span
        result = [r for r in entries if d1 <= r.date <= date_limit]

        return PeriodEntries(at < d1, result)

    def period_status(self, at: DayLike, registries: Optional[List[Registry]] = None) -> PeriodStatus:
        no_data, entries = self.all_registries_in_period(at, registries)
        if no_data or not entries:
            return PeriodStatus.NO_DATA
        authoritative = max(entries, key=Registry.sort_key)
        return PeriodStatus.TAKEN if authoritative.took_medicine else PeriodStatus.NOT_TAKEN

    def took_medicine(self, at: DayLike, registries: Optional[List[Registry]] = None) -> Optional[Registry]:
        """The entry proving the pill was taken in the period of ``at``, if any."""
        no_data, entries = self.all_registries_in_period(at, registries)
        if no_data or not entries:
            return None
        authoritative = max(entries, key=Registry.sort_key)
        return authoritative if authoritative.took_medicine else None

    # -------------------------
    # Temporal queries
    # -------------------------
    def get_registries(self, date1: Optional[DayLike] = None, date2: Optional[DayLike] = None,
                       most_recent_first: bool = True, unsorted: bool = False,
                       additional_filter: Optional[Callable[[Registry], bool]] = None) -> List[Registry]:
        date1 = as_day(date1) if date1 is not None else date.min
        date2 = as_day(date2) if date2 is not None else date.max
        if date1 > date2:
            date1, date2 = date2, date1

        filtered = self.filter(self.medicine.registries, date1, date2, additional_filter)
        if unsorted:
            return filtered
        return sorted(filtered, key=Registry.sort_key, reverse=most_recent_first)

    @staticmethod
    def filter(registries: List[Registry], date1: DayLike, date2: DayLike,
               additional_filter: Optional[Callable[[Registry], bool]] = None) -> List[Registry]:
        d1, d2 = as_day(date1), as_day(date2)
        return [r for r in registries
                if d1 <= r.date <= d2 and (additional_filter is None or additional_filter(r))]

    def find_registry(self, at: DayLike, registries: Optional[List[Registry]] = None) -> Optional[Registry]:
        if registries is not None:
            found = self.filter(registries, at, at)
            return found[0] if found else None
        found = self.get_registries(at, at)
        return found[0] if found else None

    def most_recent_entry(self) -> Optional[Registry]:
        entries = self.get_registries()
        return entries[0] if entries else None

    def oldest_entry(self) -> Optional[Registry]:
        entries = self.get_registries()
        return entries[-1] if entries else None

    def get_limits(self) -> Optional[Tuple[Registry, Registry]]:
        """(least recent, most recent) entries, or None for an empty log."""
        entries = self.get_registries(most_recent_first=True)
        if not entries:
            return None
        return entries[-1], entries[0]

    def last_pill_date(self, registries: Optional[List[Registry]] = None) -> Optional[date]:
        entries = registries if registries is not None else self.get_registries(most_recent_first=True)
        for r in entries:
            if r.took_medicine:
                return r.date
        return None

    # -------------------------
    # Edits
    # -------------------------
    def add_registry(self, at: DayLike, took_medicine: bool, modify_entry: bool = False) -> AddResult:
        """
        Log whether the pill was taken on ``at``.

        Raises FutureEntryError for days after today. ``conflict`` in the
        result tells whether another entry already covered the period or day.
        """
        at = as_day(at)
        took_medicine = bool(took_medicine)
        if at > self.today():
            logger.error(f"cannot log entries in the future day={fmt_day(at)}")
            raise FutureEntryError(f"cannot log entries in the future: {fmt_day(at)}")
        self.reload()

        conflicting = self.took_medicine(at)
        if conflicting is not None:
            if not modify_entry:
                if took_medicine and conflicting.date == at:
                    logger.warning(f"found equivalent entry day={fmt_day(at)}")
                else:
                    logger.warning(f"can't modify entry day={fmt_day(at)} "
                                   f"conflicting={fmt_day(conflicting.date)}")
                return AddResult(False, True)

            logger.warning(f"replacing conflicting entry {fmt_day(conflicting.date)} "
                           f"with day={fmt_day(at)} took={took_medicine}")
            self.remove_entry(conflicting.date)
            self._insert(at, took_medicine)
            return AddResult(True, True)

        existing = self.find_registry(at)
        if existing is not None:
            if existing.took_medicine == took_medicine:
                logger.warning(f"found equivalent entry day={fmt_day(at)}")
                return AddResult(False, True)
            if not modify_entry:
                logger.info(f"can't modify entry day={fmt_day(at)}; aborting")
                return AddResult(False, True)

            logger.info(f"found entry same day; modifying day={fmt_day(at)} took={took_medicine}")
            existing.took_medicine = took_medicine
            if self.db is not None and existing.id is not None:
                self.db.update_registry(existing.id, took_medicine)
            return AddResult(True, True)

        logger.info(f"adding entry day={fmt_day(at)} took={took_medicine}")
        self._insert(at, took_medicine)
        return AddResult(True, False)

    def remove_entry(self, at: DayLike) -> bool:
        at = as_day(at)
        if self.find_registry(at) is None:
            logger.error(f"removing entry: entry not found day={fmt_day(at)}")
            return False

        if self.db is not None and self.medicine.id is not None:
            self.db.delete_registries(self.medicine.id, at)
        self.medicine.registries = [r for r in self.medicine.registries if r.date != at]
        return True

    def _insert(self, at: date, took_medicine: bool) -> Registry:
        registry = Registry(date=at, took_medicine=took_medicine)
        if self.db is not None and self.medicine.id is not None:
            registry.id = self.db.add_registry(self.medicine.id, at, took_medicine)
        self.medicine.registries.append(registry)
        return registry
