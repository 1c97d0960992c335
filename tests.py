import io
import json
import os
import sqlite3
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from datetime import date, datetime
from pathlib import Path
from unittest import mock

# keep test runs out of the real app data dir
os.environ.setdefault("MALARIA_DATA_DIR", tempfile.mkdtemp(prefix="malaria-tests-"))

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

import app_config
import malaria_cli
from medicine_db import MedicineDB, aes_decrypt, aes_encrypt, get_or_create_key
from pill_stats import PillStats
from registries import (AddResult, FutureEntryError, Medicine, PeriodStatus, Registry,
                        RegistriesManager)
from service import pill_service
from today_widget import SharedDefaults, TodayWidget, consume_widget_answer

TODAY = date(2024, 6, 30)


def d(day: int, month: int = 6) -> date:
    return date(2024, month, day)


def make_manager(interval, entries=(), db=None, today=TODAY):
    med = Medicine(name="Mefloquine", interval=interval)
    for day, took in entries:
        med.registries.append(Registry(date=day, took_medicine=took))
    return RegistriesManager(med, db=db, today=lambda: today)


class TestPeriodReconciliation(unittest.TestCase):
    def test_daily_period_is_the_day_itself(self):
        m = make_manager(1, [(d(10), True)])
        self.assertEqual(m.period_status(d(10)), PeriodStatus.TAKEN)
        self.assertEqual(m.period_status(d(11)), PeriodStatus.NO_DATA)
        self.assertEqual(m.period_status(d(9)), PeriodStatus.NO_DATA)

    def test_weekly_period_covers_following_days(self):
        m = make_manager(7, [(d(3), True)])
        for day in (3, 5, 9):
            self.assertEqual(m.period_status(d(day)), PeriodStatus.TAKEN, day)
        self.assertEqual(m.period_status(d(10)), PeriodStatus.NO_DATA)

    def test_day_before_first_entry_has_no_data(self):
        m = make_manager(7, [(d(3), True)])
        no_data, entries = m.all_registries_in_period(d(1))
        self.assertTrue(no_data)
        self.assertEqual([r.date for r in entries], [d(3)])
        self.assertEqual(m.period_status(d(1)), PeriodStatus.NO_DATA)

    def test_empty_log(self):
        m = make_manager(7)
        self.assertEqual(m.all_registries_in_period(d(5)), (True, []))
        self.assertIsNone(m.took_medicine(d(5)))

    def test_entries_after_period_limit_are_excluded(self):
        m = make_manager(7, [(d(3), True), (d(10), False)])
        no_data, entries = m.all_registries_in_period(d(8))
        self.assertFalse(no_data)
        self.assertEqual([r.date for r in entries], [d(3)])

    def test_most_recent_entry_is_authoritative(self):
        m = make_manager(7, [(d(3), True), (d(5), False)])
        self.assertEqual(m.period_status(d(6)), PeriodStatus.NOT_TAKEN)
        self.assertIsNone(m.took_medicine(d(6)))

        m = make_manager(7, [(d(3), False), (d(5), True)])
        self.assertEqual(m.period_status(d(6)), PeriodStatus.TAKEN)
        self.assertEqual(m.took_medicine(d(6)).date, d(5))

    def test_same_day_duplicates_later_insert_wins(self):
        m = make_manager(1, [(d(3), True), (d(3), False)])
        self.assertEqual(m.period_status(d(3)), PeriodStatus.NOT_TAKEN)

    def test_cached_registries(self):
        m = make_manager(7)
        cached = [Registry(d(5), True), Registry(d(3), False)]
        self.assertEqual(m.period_status(d(6), registries=cached), PeriodStatus.TAKEN)
        self.assertEqual(m.period_status(d(6)), PeriodStatus.NO_DATA)

    def test_datetime_inputs_ignore_time_of_day(self):
        m = make_manager(1, [(datetime(2024, 6, 3, 23, 59), True)])
        self.assertEqual(m.period_status(datetime(2024, 6, 3, 0, 1)), PeriodStatus.TAKEN)
        self.assertEqual(m.find_registry(datetime(2024, 6, 3, 12, 0)).date, d(3))


class TestAddRegistry(unittest.TestCase):
    def test_future_date_rejected(self):
        m = make_manager(7)
        with self.assertRaises(FutureEntryError):
            m.add_registry(d(1, 7), True)
        self.assertEqual(m.medicine.registries, [])
        self.assertEqual(m.add_registry(TODAY, True), AddResult(True, False))

    def test_add_to_empty_log(self):
        m = make_manager(7)
        self.assertEqual(m.add_registry(d(3), True), AddResult(True, False))
        self.assertEqual(m.period_status(d(4)), PeriodStatus.TAKEN)

    def test_conflict_in_period_rejected_without_overwrite(self):
        m = make_manager(7, [(d(3), True)])
        self.assertEqual(m.add_registry(d(5), True), AddResult(False, True))
        self.assertEqual(m.add_registry(d(5), False), AddResult(False, True))
        self.assertEqual([r.date for r in m.get_registries()], [d(3)])

    def test_conflict_replaced_with_overwrite(self):
        m = make_manager(7, [(d(3), True)])
        self.assertEqual(m.add_registry(d(5), True, modify_entry=True), AddResult(True, True))
        entries = m.get_registries()
        self.assertEqual([(r.date, r.took_medicine) for r in entries], [(d(5), True)])

    def test_equivalent_entry_same_day(self):
        m = make_manager(7, [(d(3), True)])
        self.assertEqual(m.add_registry(d(3), True), AddResult(False, True))
        m = make_manager(7, [(d(3), False)])
        self.assertEqual(m.add_registry(d(3), False), AddResult(False, True))

    def test_same_day_entry_modified_in_place(self):
        m = make_manager(7, [(d(3), False)])
        self.assertEqual(m.add_registry(d(3), True), AddResult(False, True))
        self.assertEqual(m.add_registry(d(3), True, modify_entry=True), AddResult(True, True))
        self.assertEqual(len(m.medicine.registries), 1)
        self.assertTrue(m.medicine.registries[0].took_medicine)

    def test_taken_after_missed_in_same_period(self):
        m = make_manager(7, [(d(3), False)])
        self.assertEqual(m.add_registry(d(5), True), AddResult(True, False))
        self.assertEqual(m.period_status(d(6)), PeriodStatus.TAKEN)

    def test_overwrite_taken_with_not_taken_same_day(self):
        m = make_manager(7, [(d(3), True)])
        self.assertEqual(m.add_registry(d(3), False, modify_entry=True), AddResult(True, True))
        self.assertEqual(m.period_status(d(3)), PeriodStatus.NOT_TAKEN)


class TestTemporalQueries(unittest.TestCase):
    def setUp(self):
        self.m = make_manager(1, [(d(5), True), (d(1), False), (d(3), True), (d(7), False)])

    def test_get_registries_order_and_bounds(self):
        self.assertEqual([r.date for r in self.m.get_registries()], [d(7), d(5), d(3), d(1)])
        self.assertEqual([r.date for r in self.m.get_registries(most_recent_first=False)],
                         [d(1), d(3), d(5), d(7)])
        self.assertEqual([r.date for r in self.m.get_registries(d(6), d(3))], [d(5), d(3)])
        self.assertEqual([r.date for r in self.m.get_registries(d(3), d(6), unsorted=True)], [d(5), d(3)])
        taken = self.m.get_registries(additional_filter=lambda r: r.took_medicine)
        self.assertEqual([r.date for r in taken], [d(5), d(3)])

    def test_limits(self):
        self.assertEqual(self.m.most_recent_entry().date, d(7))
        self.assertEqual(self.m.oldest_entry().date, d(1))
        least, most = self.m.get_limits()
        self.assertEqual((least.date, most.date), (d(1), d(7)))
        empty = make_manager(1)
        self.assertIsNone(empty.get_limits())
        self.assertIsNone(empty.most_recent_entry())
        self.assertIsNone(empty.oldest_entry())

    def test_last_pill_date(self):
        self.assertEqual(self.m.last_pill_date(), d(5))
        self.assertIsNone(make_manager(1, [(d(2), False)]).last_pill_date())

    def test_find_and_remove(self):
        self.assertIsNone(self.m.find_registry(d(2)))
        self.assertFalse(self.m.remove_entry(d(2)))
        self.assertTrue(self.m.remove_entry(d(3)))
        self.assertIsNone(self.m.find_registry(d(3)))
        self.assertEqual(len(self.m.medicine.registries), 3)

    def test_cached_views(self):
        cached = [Registry(d(9), False), Registry(d(8), True)]
        self.assertEqual(self.m.find_registry(d(8), registries=cached).date, d(8))
        self.assertIsNone(self.m.find_registry(d(5), registries=cached))
        self.assertEqual(self.m.last_pill_date(registries=cached), d(8))
        self.assertIsNone(self.m.last_pill_date(registries=[Registry(d(9), False)]))

    def test_static_filter(self):
        registries = self.m.medicine.registries
        taken = RegistriesManager.filter(registries, d(1), d(5), additional_filter=lambda r: r.took_medicine)
        self.assertEqual(sorted(r.date for r in taken), [d(3), d(5)])
        self.assertEqual(RegistriesManager.filter(registries, d(2), d(2)), [])

    def test_remove_keeps_memory_when_store_fails(self):
        class FailingStore:
            def delete_registries(self, medicine_id, day):
                raise sqlite3.OperationalError("disk I/O error")

        self.m.medicine.id = 1
        self.m.db = FailingStore()
        with self.assertRaises(sqlite3.OperationalError):
            self.m.remove_entry(d(3))
        self.assertIsNotNone(self.m.find_registry(d(3)))
        self.assertEqual(len(self.m.medicine.registries), 4)


class TestMedicineModel(unittest.TestCase):
    def test_validation(self):
        with self.assertRaises(ValueError):
            Medicine(name="Doxycycline", interval=0)
        with self.assertRaises(ValueError):
            Medicine(name="  ", interval=1)
        with self.assertRaises(ValueError):
            Medicine(name="Doxycycline", interval="weekly")
        self.assertEqual(Medicine(name=" Doxycycline ", interval="1").interval, 1)

    def test_notification_time(self):
        for bad in ("25:99", "9", "09:60", "9:00", "", "noon"):
            with self.assertRaises(ValueError, msg=bad):
                Medicine(name="Doxycycline", interval=1, notification_time=bad)
        med = Medicine(name="Doxycycline", interval=1, notification_time=" 07:05 ")
        self.assertEqual(med.notification_time, "07:05")
        self.assertIsNone(Medicine(name="Doxycycline", interval=1).notification_time)


class TestPillStats(unittest.TestCase):
    def test_next_pill_date(self):
        self.assertEqual(PillStats(make_manager(7, [(d(3), True)])).next_pill_date(), d(10))
        self.assertIsNone(PillStats(make_manager(7)).next_pill_date())

    def test_is_pill_due(self):
        stats = PillStats(make_manager(7, [(d(3), True)]))
        self.assertFalse(stats.is_pill_due(d(5)))
        self.assertFalse(stats.is_pill_due(d(9)))
        self.assertTrue(stats.is_pill_due(d(10)))
        self.assertTrue(PillStats(make_manager(7)).is_pill_due(d(10)))

    def test_pill_streak(self):
        taken = [(d(3), True), (d(10), True), (d(17), True)]
        self.assertEqual(PillStats(make_manager(7, taken)).pill_streak(d(20)), 3)

        missed = [(d(3), True), (d(10), False), (d(17), True)]
        self.assertEqual(PillStats(make_manager(7, missed)).pill_streak(d(20)), 1)

        gap = [(d(20, 5), True), (d(17), True)]
        self.assertEqual(PillStats(make_manager(7, gap)).pill_streak(d(20)), 1)

        self.assertEqual(PillStats(make_manager(7, taken)).pill_streak(), 0)

    def test_adherence_over_blocks(self):
        m = make_manager(7, [(d(3), True), (d(10), False), (d(24), True)])
        stats = PillStats(m)
        history = stats.history(d(1), d(30))
        self.assertEqual([h[0] for h in history], [d(3), d(10), d(17), d(24)])
        self.assertEqual([h[1] for h in history], [PeriodStatus.TAKEN, PeriodStatus.NOT_TAKEN,
                                                   PeriodStatus.NO_DATA, PeriodStatus.TAKEN])
        self.assertAlmostEqual(stats.pill_adherence(d(30), d(1)), 0.5)
        self.assertEqual(PillStats(make_manager(7)).pill_adherence(d(1), d(30)), 0.0)


class TestCrypto(unittest.TestCase):
    def test_aesgcm_roundtrip(self):
        key = AESGCM.generate_key(bit_length=256)
        pt = os.urandom(1024 * 64)
        self.assertEqual(aes_decrypt(aes_encrypt(pt, key), key), pt)

    def test_short_ciphertext(self):
        with self.assertRaises(InvalidTag):
            aes_decrypt(b"short", AESGCM.generate_key(bit_length=256))


class TestMedicineDB(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.td = Path(self._td.name)
        self.key = get_or_create_key(self.td / ".enc_key")
        self.db = MedicineDB(self.key, db_path=self.td / "m.db.aes", tmp_dir=self.td / "tmp")

    def tearDown(self):
        self._td.cleanup()

    def test_key_is_stable(self):
        self.assertEqual(get_or_create_key(self.td / ".enc_key"), self.key)
        self.assertEqual(len(self.key), 32)

    def test_medicines_and_current(self):
        self.db.register_medicine("Mefloquine", 7, is_current=True)
        self.db.register_medicine("Doxycycline", 1)
        with self.assertRaises(ValueError):
            self.db.register_medicine("Mefloquine", 7)
        self.assertEqual(self.db.get_current().name, "Mefloquine")
        self.db.set_current("Doxycycline")
        self.assertEqual(self.db.get_current().name, "Doxycycline")
        self.assertEqual([m.name for m in self.db.get_medicines() if m.is_current], ["Doxycycline"])
        with self.assertRaises(ValueError):
            self.db.set_current("Chloroquine")
        with self.assertRaises(ValueError):
            self.db.update_medicine(1, colour="red")

    def test_manager_persists_edits(self):
        med = self.db.register_medicine("Mefloquine", 7, is_current=True)
        m = RegistriesManager(med, db=self.db, today=lambda: TODAY)
        m.add_registry(d(3), False)
        m.add_registry(d(3), True, modify_entry=True)
        m.add_registry(d(10), True)
        m.add_registry(d(12), False, modify_entry=True)

        reloaded = RegistriesManager(self.db.get_current(), today=lambda: TODAY)
        self.assertEqual([(r.date, r.took_medicine) for r in reloaded.get_registries()],
                         [(d(12), False), (d(3), True)])

        m.remove_entry(d(3))
        self.assertEqual([r.date for r in self.db.load_registries(med.id)], [d(12)])
        self.assertEqual(self.db.stats(), {"medicines": 1, "registries": 1})

        self.db.delete_medicine(med.id)
        self.assertIsNone(self.db.get_current())
        self.assertEqual(self.db.stats(), {"medicines": 0, "registries": 0})

    def test_update_medicine(self):
        a = self.db.register_medicine("Mefloquine", 7, is_current=True)
        b = self.db.register_medicine("Doxycycline", 1)
        self.db.update_medicine(b.id, is_current=True)
        self.assertEqual([m.name for m in self.db.get_medicines() if m.is_current], ["Doxycycline"])
        self.assertEqual(self.db.get_current().id, b.id)

        with self.assertRaises(ValueError):
            self.db.update_medicine(a.id, interval=0)
        with self.assertRaises(ValueError):
            self.db.update_medicine(a.id, notification_time="25:99")
        self.db.update_medicine(a.id, interval=14, notification_time="08:30")
        med = self.db.get_medicine("Mefloquine")
        self.assertEqual((med.interval, med.notification_time, med.is_current), (14, "08:30", False))

    def test_manager_sees_entries_written_by_service(self):
        self.db.register_medicine("Mefloquine", 7, is_current=True)
        app = RegistriesManager(self.db.get_current(), db=self.db, today=lambda: d(10))
        defaults = SharedDefaults(self.td / "widget.json")
        TodayWidget(defaults, today=lambda: d(10)).yes_pressed()
        pill_service.check_once(self.db, defaults, datetime(2024, 6, 10, 8, 0), {})

        self.assertEqual(app.add_registry(d(10), True), AddResult(False, True))
        self.assertEqual(len(self.db.load_registries(app.medicine.id)), 1)
        self.assertEqual(app.period_status(d(10)), PeriodStatus.TAKEN)

        other = RegistriesManager(self.db.get_current(), db=self.db, today=lambda: d(10))
        other.add_registry(d(10), False, modify_entry=True)
        app.reload()
        self.assertEqual(app.period_status(d(10)), PeriodStatus.NOT_TAKEN)

    def test_wrong_key(self):
        self.db.register_medicine("Mefloquine", 7)
        other = MedicineDB(AESGCM.generate_key(bit_length=256), db_path=self.db.db_path,
                           tmp_dir=self.td / "tmp")
        with self.assertRaises(InvalidTag):
            other.get_medicines()

    def test_missing_db_without_create(self):
        with self.assertRaises(RuntimeError):
            MedicineDB(self.key, db_path=self.td / "missing.aes", tmp_dir=self.td / "tmp", create=False)


class TestTodayWidget(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.defaults = SharedDefaults(Path(self._td.name) / "widget.json")

    def tearDown(self):
        self._td.cleanup()

    def test_labels(self):
        w = TodayWidget(self.defaults, today=lambda: d(3))
        self.assertEqual(w.day_label(), "Monday")
        self.assertEqual(w.date_label(), "6/3/2024")

    def test_yes_dismisses_and_is_applied(self):
        w = TodayWidget(self.defaults, today=lambda: d(3))
        self.assertTrue(w.has_content)
        w.yes_pressed()
        self.assertFalse(w.has_content)
        self.assertTrue(w.pending_answer())

        m = make_manager(7, today=d(3))
        self.assertEqual(consume_widget_answer(self.defaults, m), AddResult(True, False))
        self.assertEqual(m.period_status(d(3)), PeriodStatus.TAKEN)
        self.assertIsNone(w.pending_answer())
        self.assertFalse(w.has_content)
        self.assertIsNone(consume_widget_answer(self.defaults, m))

    def test_no_keeps_earlier_dose_of_period(self):
        TodayWidget(self.defaults, today=lambda: d(5)).no_pressed()
        m = make_manager(7, [(d(3), True)], today=d(5))
        self.assertEqual(consume_widget_answer(self.defaults, m), AddResult(False, True))
        self.assertEqual([(r.date, r.took_medicine) for r in m.get_registries()], [(d(3), True)])
        self.assertEqual(m.period_status(d(5)), PeriodStatus.TAKEN)
        self.assertIsNone(self.defaults.get(app_config.WIDGET_ANSWER_KEY))

    def test_answer_replaces_entry_logged_today(self):
        TodayWidget(self.defaults, today=lambda: d(5)).yes_pressed()
        m = make_manager(7, [(d(5), False)], today=d(5))
        self.assertEqual(consume_widget_answer(self.defaults, m), AddResult(True, True))
        self.assertEqual([(r.date, r.took_medicine) for r in m.get_registries()], [(d(5), True)])

        TodayWidget(self.defaults, today=lambda: d(5)).no_pressed()
        m = make_manager(7, [(d(3), False), (d(5), True)], today=d(5))
        self.assertEqual(consume_widget_answer(self.defaults, m), AddResult(True, True))
        self.assertEqual([(r.date, r.took_medicine) for r in m.get_registries()],
                         [(d(5), False), (d(3), False)])

    def test_stale_answer_discarded(self):
        TodayWidget(self.defaults, today=lambda: d(2)).yes_pressed()
        m = make_manager(7, today=d(3))
        self.assertIsNone(consume_widget_answer(self.defaults, m))
        self.assertIsNone(self.defaults.get(app_config.WIDGET_ANSWER_KEY))
        self.assertEqual(m.medicine.registries, [])

    def test_writes_leave_no_temp_files(self):
        for i in range(3):
            self.defaults.set("k", i)
        self.defaults.update({"a": 1})
        self.defaults.remove("a")
        self.assertEqual([p.name for p in Path(self._td.name).iterdir()], ["widget.json"])
        self.assertEqual(json.loads(self.defaults.path.read_text(encoding="utf-8")), {"k": 2})

    def test_writes_use_unique_temp_names(self):
        seen = []
        real_write = Path.write_bytes

        def spy(path, data):
            seen.append(path.name)
            return real_write(path, data)

        with mock.patch.object(Path, "write_bytes", spy):
            self.defaults.set("a", 1)
            self.defaults.set("b", 2)
        self.assertEqual(len(set(seen)), 2)
        self.assertTrue(all(n.startswith("widget.json.tmp.") for n in seen), seen)
        self.assertEqual(self.defaults.get("b"), 2)

    def test_corrupt_defaults_file(self):
        self.defaults.path.write_text("{not json", encoding="utf-8")
        self.assertIsNone(self.defaults.get(app_config.WIDGET_ANSWER_KEY))
        self.defaults.set("k", 1)
        self.assertEqual(self.defaults.get("k"), 1)


class TestReminderService(unittest.TestCase):
    def test_reminder_due(self):
        m = make_manager(7, [(d(3), True)], today=d(10))
        self.assertTrue(pill_service.reminder_due(m, datetime(2024, 6, 10, 9, 30), "09:00", None))
        self.assertFalse(pill_service.reminder_due(m, datetime(2024, 6, 10, 8, 30), "09:00", None))
        self.assertFalse(pill_service.reminder_due(m, datetime(2024, 6, 10, 9, 30), "09:00", d(10)))
        self.assertFalse(pill_service.reminder_due(m, datetime(2024, 6, 5, 9, 30), "09:00", None))
        self.assertTrue(pill_service.reminder_due(m, datetime(2024, 6, 10, 9, 30), "bad", None))

    def test_check_once_fires_once_per_day(self):
        with tempfile.TemporaryDirectory() as td:
            td = Path(td)
            db = MedicineDB(get_or_create_key(td / ".enc_key"), db_path=td / "m.db.aes", tmp_dir=td / "tmp")
            defaults = SharedDefaults(td / "widget.json")
            fired = {}
            now = datetime(2024, 6, 10, 9, 30)
            self.assertFalse(pill_service.check_once(db, defaults, now, fired))

            db.register_medicine("Mefloquine", 7, notification_time="09:00", is_current=True)
            self.assertTrue(pill_service.check_once(db, defaults, now, fired))
            self.assertFalse(pill_service.check_once(db, defaults, now, fired))

            TodayWidget(defaults, today=lambda: d(11)).yes_pressed()
            self.assertFalse(pill_service.check_once(db, defaults, datetime(2024, 6, 11, 9, 30), fired))
            self.assertEqual(db.get_current().registries[0].date, d(11))


class TestCli(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.base = ["--data-dir", self._td.name]

    def tearDown(self):
        self._td.cleanup()

    def run_cli(self, *args):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = malaria_cli.main(self.base + list(args))
        return code, out.getvalue()

    def test_log_and_status(self):
        self.assertEqual(self.run_cli("log", "yes")[0], malaria_cli.EXIT_USAGE)
        self.assertEqual(self.run_cli("medicine", "add", "Mefloquine", "--interval", "7", "--current")[0], 0)
        self.assertEqual(self.run_cli("log", "yes", "--date", "2024-06-03")[0], 0)
        self.assertEqual(self.run_cli("log", "yes", "--date", "2024-06-05")[0], malaria_cli.EXIT_REJECTED)
        self.assertEqual(self.run_cli("log", "yes", "--date", "2024-06-05", "--overwrite")[0], 0)

        code, out = self.run_cli("status", "--date", "2024-06-06")
        self.assertEqual(code, 0)
        report = json.loads(out)
        self.assertEqual(report["status"], "taken")
        self.assertEqual(report["last_pill"], "2024-06-05")
        self.assertEqual(report["next_pill"], "2024-06-12")
        self.assertFalse(report["due"])

        code, out = self.run_cli("history")
        self.assertEqual(out.strip().splitlines(), ["2024-06-05  taken"])

    def test_future_and_bad_input(self):
        self.run_cli("medicine", "add", "Doxycycline", "--interval", "1", "--current")
        self.assertEqual(self.run_cli("log", "no", "--date", "2999-01-01")[0], malaria_cli.EXIT_REJECTED)
        self.assertEqual(self.run_cli("medicine", "add", "Bad", "--interval", "0")[0], malaria_cli.EXIT_USAGE)
        self.assertEqual(self.run_cli("medicine", "add", "Late", "--notify-at", "25:99")[0], malaria_cli.EXIT_USAGE)
        with self.assertRaises(SystemExit), redirect_stderr(io.StringIO()):
            malaria_cli.main(self.base + ["log", "maybe"])

    def test_medicine_switch(self):
        self.run_cli("medicine", "add", "Mefloquine", "--current")
        self.run_cli("medicine", "add", "Doxycycline", "--interval", "1")
        self.assertEqual(self.run_cli("medicine", "use", "Doxycycline")[0], 0)
        code, out = self.run_cli("medicine", "list")
        self.assertIn("* Doxycycline", out)
        self.assertIn("  Mefloquine", out)


if __name__ == "__main__":
    unittest.main(verbosity=2)
