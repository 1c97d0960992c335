# pill_stats.py
# Derived numbers for the home screen: next pill, streak, adherence.

from datetime import date, timedelta
from typing import List, Optional, Tuple

from registries import DayLike, PeriodStatus, Registry, RegistriesManager, as_day


class PillStats:
    """
    Statistics over one medicine's log.

    Adherence and history split time into fixed dosing blocks of ``interval``
    days starting at the first day considered; inside a block the most recent
    entry decides whether it counts as taken.
    """

    def __init__(self, manager: RegistriesManager):
        self.manager = manager

    @property
    def interval(self) -> int:
        return self.manager.medicine.interval

    def next_pill_date(self) -> Optional[date]:
        last = self.manager.last_pill_date()
        if last is None:
            return None
        return last + timedelta(days=self.interval)

    def is_pill_due(self, at: DayLike) -> bool:
        at = as_day(at)
        if self.manager.period_status(at) == PeriodStatus.TAKEN:
            return False
        nxt = self.next_pill_date()
        return nxt is None or at >= nxt

    def pill_streak(self, at: Optional[DayLike] = None) -> int:
        """Consecutive taken doses up to ``at`` (today by default)."""
        at = as_day(at) if at is not None else self.manager.today()
        entries = self.manager.get_registries(date2=at, most_recent_first=True)

        streak = 0
        prev: Optional[date] = None
        for r in entries:
            if prev is None and (at - r.date).days > self.interval:
                break
            if prev == r.date:
                continue
            if not r.took_medicine:
                break
            if prev is not None and (prev - r.date).days > self.interval:
                break
            streak += 1
            prev = r.date
        return streak

    def history(self, date1: DayLike, date2: DayLike) -> List[Tuple[date, PeriodStatus]]:
        d1, d2 = as_day(date1), as_day(date2)
        if d1 > d2:
            d1, d2 = d2, d1

        oldest = self.manager.oldest_entry()
        if oldest is None:
            return []
        start = max(d1, oldest.date)

        step = timedelta(days=self.interval)
        entries = self.manager.get_registries(start, d2, most_recent_first=True)
        out = []
        block = start
        while block <= d2:
            out.append((block, self._block_status(entries, block, block + step - timedelta(days=1))))
            block += step
        return out

    def pill_adherence(self, date1: DayLike, date2: DayLike) -> float:
        periods = self.history(date1, date2)
        if not periods:
            return 0.0
        taken = sum(1 for _, status in periods if status == PeriodStatus.TAKEN)
        return taken / len(periods)

    @staticmethod
    def _block_status(entries: List[Registry], first: date, last: date) -> PeriodStatus:
        inside = RegistriesManager.filter(entries, first, last)
        if not inside:
            return PeriodStatus.NO_DATA
        latest = max(inside, key=Registry.sort_key)
        return PeriodStatus.TAKEN if latest.took_medicine else PeriodStatus.NOT_TAKEN
