# app_log.py
# Logger shared by every module: in-memory ring (for the debug screen) + log file.

import logging
from pathlib import Path
from threading import RLock
from typing import Optional

import app_config

_LOG_LOCK = RLock()


class _RingLog:
    def __init__(self, max_lines=800):
        self.max_lines = int(max_lines)
        self._lines = []
        self._lock = RLock()

    def add(self, line: str):
        line = (line or "").rstrip("\n")
        if not line:
            return
        with self._lock:
            self._lines.append(line)
            if len(self._lines) > self.max_lines:
                self._lines = self._lines[-self.max_lines:]

    def text(self) -> str:
        with self._lock:
            return "\n".join(self._lines)

    def lines(self):
        with self._lock:
            return list(self._lines)

    def clear(self):
        with self._lock:
            self._lines = []


RING = _RingLog()


class _FileAndRingHandler(logging.Handler):
    def __init__(self, path: Optional[Path] = None):
        super().__init__()
        self.path = path
        self._fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    def emit(self, record):
        try:
            msg = self._fmt.format(record)
        except Exception:
            msg = str(record.getMessage())
        RING.add(msg)
        path = self.path or app_config.LOG_PATH
        try:
            with _LOG_LOCK:
                path.parent.mkdir(parents=True, exist_ok=True)
                with path.open("a", encoding="utf-8") as f:
                    f.write(msg + "\n")
        except OSError:
            self.handleError(record)


def clear_log():
    RING.clear()
    with _LOG_LOCK:
        app_config.LOG_PATH.unlink(missing_ok=True)


logger = logging.getLogger("malaria")
logger.setLevel(logging.INFO)
if not any(isinstance(h, _FileAndRingHandler) for h in logger.handlers):
    logger.addHandler(_FileAndRingHandler())
