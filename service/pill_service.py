# service/pill_service.py
# Android background service: posts the daily pill reminder.
import os, sys, time
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Optional

try:
    from jnius import autoclass
except Exception:
    autoclass = None

# p4a starts the service with service/ as cwd; the app modules live one level up
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import app_config
from app_log import logger
from medicine_db import MedicineDB, load_key
from pill_stats import PillStats
from registries import RegistriesManager, parse_hm
from today_widget import SharedDefaults, consume_widget_answer

POLL_SECONDS = int(os.environ.get("MALARIA_SERVICE_POLL", "60"))


def _parse_hm(value: Optional[str]):
    try:
        return parse_hm(value or app_config.DEFAULT_NOTIFICATION_TIME)
    except ValueError:
        logger.warning(f"bad notification time {value!r}; using default")
        return parse_hm(app_config.DEFAULT_NOTIFICATION_TIME)


def reminder_due(manager: RegistriesManager, now: datetime, notification_time: Optional[str],
                 last_fired: Optional[date]) -> bool:
    """True when the reminder for ``now``'s day should be posted."""
    today = now.date()
    if last_fired == today:
        return False
    h, m = _parse_hm(notification_time)
    if (now.hour, now.minute) < (h, m):
        return False
    return PillStats(manager).is_pill_due(today)


def notify(title: str, text: str):
    if autoclass is None:
        logger.info(f"[reminder] {title}: {text}")
        return
    try:
        PythonService = autoclass("org.kivy.android.PythonService")
        service = PythonService.mService
        Context = autoclass("android.content.Context")
        NotificationManager = autoclass("android.app.NotificationManager")
        NotificationChannel = autoclass("android.app.NotificationChannel")
        Notification = autoclass("android.app.Notification")
        Build = autoclass("android.os.Build")

        channel_id = "malaria_reminders"
        nm = service.getSystemService(Context.NOTIFICATION_SERVICE)

        if Build.VERSION.SDK_INT >= 26:
            ch = NotificationChannel(channel_id, "Pill Reminders", NotificationManager.IMPORTANCE_HIGH)
            ch.setDescription("Malaria pill reminders")
            nm.createNotificationChannel(ch)
            builder = Notification.Builder(service, channel_id)
        else:
            builder = Notification.Builder(service)

        builder.setContentTitle(title)
        builder.setContentText(text)
        builder.setSmallIcon(service.getApplicationInfo().icon)
        builder.setAutoCancel(True)

        nid = int(time.time()) & 0x7fffffff
        nm.notify(nid, builder.build())
    except Exception:
        logger.exception("notification failed")


def check_once(db: MedicineDB, defaults: SharedDefaults, now: datetime,
               fired: Dict[str, date]) -> bool:
    medicine = db.get_current()
    if medicine is None:
        return False
    manager = RegistriesManager(medicine, db=db, today=lambda: now.date())
    consume_widget_answer(defaults, manager)

    if not reminder_due(manager, now, medicine.notification_time, fired.get(medicine.name)):
        return False
    fired[medicine.name] = now.date()
    notify("Pill reminder", f"Time to take your {medicine.name}")
    return True


def main_loop():
    key = load_key()
    if key is None:
        logger.error("service: no key - open the app once to initialize")
        return
    defaults = SharedDefaults()
    fired: Dict[str, date] = {}
    db = None

    while True:
        try:
            if db is None:
                db = MedicineDB(key, create=False)
            check_once(db, defaults, datetime.now(), fired)
        except RuntimeError:
            # DB only exists once the app was opened
            logger.info("service: db not ready")
        except Exception:
            logger.exception("service check failed")

        time.sleep(POLL_SECONDS)


if __name__ == "__main__":
    main_loop()
