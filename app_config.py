# app_config.py
# Paths and defaults shared by the app, the CLI and the background service.

import os
import uuid
from pathlib import Path
from typing import Optional

try:
    from jnius import autoclass
except Exception:
    autoclass = None

# Package identity (must match buildozer.spec package.domain / package.name)
PACKAGE_DOMAIN = "org.example"
PACKAGE_NAME = "malariareminder"
ANDROID_PACKAGE = f"{PACKAGE_DOMAIN}.{PACKAGE_NAME}"

APP_DIR_NAME = "malaria_data"

DEFAULT_INTERVAL_DAYS = 7
DEFAULT_NOTIFICATION_TIME = "09:00"

# Shared-defaults keys written by the today widget
WIDGET_ANSWER_KEY = "DidTakePillForToday"
WIDGET_DATE_KEY = "DidTakePillForTodayDate"
WIDGET_DISMISSED_KEY = "WidgetDismissedOn"


def _is_writable_dir(p: Path) -> bool:
    try:
        p.mkdir(parents=True, exist_ok=True)
        t = p / f".writetest.{uuid.uuid4().hex}"
        t.write_text("ok", encoding="utf-8")
        t.unlink(missing_ok=True)
        return True
    except OSError:
        return False


def _android_files_dir() -> Optional[Path]:
    if autoclass is None:
        return None
    for holder, attr in (("org.kivy.android.PythonActivity", "mActivity"),
                         ("org.kivy.android.PythonService", "mService")):
        try:
            ctx = getattr(autoclass(holder), attr)
            if ctx is None:
                continue
            return Path(str(ctx.getFilesDir().getAbsolutePath()))
        except Exception:
            continue
    return None


def app_base_dir() -> Path:
    override = os.environ.get("MALARIA_DATA_DIR")
    if override:
        d = Path(override)
        d.mkdir(parents=True, exist_ok=True)
        return d

    p = os.environ.get("ANDROID_PRIVATE")
    if p:
        d = Path(p) / APP_DIR_NAME
        if _is_writable_dir(d):
            return d

    af = _android_files_dir()
    if af:
        d = af / APP_DIR_NAME
        if _is_writable_dir(d):
            return d

    d = Path(__file__).resolve().parent / APP_DIR_NAME
    d.mkdir(parents=True, exist_ok=True)
    return d


BASE_DIR = app_base_dir()
DB_PATH = BASE_DIR / "malaria.db.aes"
KEY_PATH = BASE_DIR / ".enc_key"
LOG_PATH = BASE_DIR / "app.log"
WIDGET_DEFAULTS_PATH = BASE_DIR / "widget_defaults.json"
TMP_DIR = BASE_DIR / "tmp"
TMP_DIR.mkdir(parents=True, exist_ok=True)
