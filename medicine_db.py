# medicine_db.py
# AES-GCM encrypted SQLite store for medicines and their registry entries.
#
# The database only exists in plaintext inside TMP_DIR while a connection is
# open; on close it is re-encrypted and atomically swapped into place.

import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from threading import RLock
from typing import Dict, List, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

import app_config
from app_log import logger
from registries import DayLike, Medicine, Registry, fmt_day, parse_hm

_CRYPTO_LOCK = RLock()

_MEDICINE_COLUMNS = ("name", "interval", "is_current", "notification_time")


# -------------------------
# Crypto utilities
# -------------------------
def _atomic_write_bytes(path: Path, data: bytes):
    tmp = path.with_suffix(path.suffix + f".tmp.{uuid.uuid4().hex}")
    tmp.parent.mkdir(parents=True, exist_ok=True)
    tmp.write_bytes(data)
    tmp.replace(path)


def aes_encrypt(data: bytes, key: bytes) -> bytes:
    aes = AESGCM(key)
    nonce = os.urandom(12)
    return nonce + aes.encrypt(nonce, data, None)


def aes_decrypt(data: bytes, key: bytes) -> bytes:
    if not data or len(data) < 12:
        raise InvalidTag("ciphertext too short")
    aes = AESGCM(key)
    nonce, ct = data[:12], data[12:]
    return aes.decrypt(nonce, ct, None)


# -------------------------
# Android Keystore (optional) - wraps the AES key with an RSA keypair
# -------------------------
_ANDROID_KEY_ALIAS = "malaria_key_v1"


def _android_ready() -> bool:
    return app_config.autoclass is not None and "ANDROID_ARGUMENT" in os.environ


def _android_keystore_get():
    KeyStore = app_config.autoclass("java.security.KeyStore")
    ks = KeyStore.getInstance("AndroidKeyStore")
    ks.load(None)
    return ks


def _android_keystore_ensure_rsa(alias: str):
    autoclass = app_config.autoclass
    ks = _android_keystore_get()
    if ks.containsAlias(alias):
        return
    KeyPairGenerator = autoclass("java.security.KeyPairGenerator")
    KeyProperties = autoclass("android.security.keystore.KeyProperties")
    Builder = autoclass("android.security.keystore.KeyGenParameterSpec$Builder")

    purposes = int(KeyProperties.PURPOSE_ENCRYPT) | int(KeyProperties.PURPOSE_DECRYPT)
    builder = Builder(alias, purposes)
    builder.setDigests([KeyProperties.DIGEST_SHA256])
    builder.setEncryptionPaddings([KeyProperties.ENCRYPTION_PADDING_RSA_OAEP])

    kpg = KeyPairGenerator.getInstance(KeyProperties.KEY_ALGORITHM_RSA, "AndroidKeyStore")
    kpg.initialize(builder.build())
    kpg.generateKeyPair()


def _android_rsa_cipher(mode_name: str, key):
    CipherJ = app_config.autoclass("javax.crypto.Cipher")
    cipher = CipherJ.getInstance("RSA/ECB/OAEPWithSHA-256AndMGF1Padding")
    cipher.init(getattr(CipherJ, mode_name), key)
    return cipher


def _android_keystore_wrap_key(aes_key: bytes) -> bytes:
    _android_keystore_ensure_rsa(_ANDROID_KEY_ALIAS)
    pub = _android_keystore_get().getCertificate(_ANDROID_KEY_ALIAS).getPublicKey()
    return bytes(_android_rsa_cipher("ENCRYPT_MODE", pub).doFinal(aes_key))


def _android_keystore_unwrap_key(wrapped: bytes) -> bytes:
    _android_keystore_ensure_rsa(_ANDROID_KEY_ALIAS)
    priv = _android_keystore_get().getEntry(_ANDROID_KEY_ALIAS, None).getPrivateKey()
    return bytes(_android_rsa_cipher("DECRYPT_MODE", priv).doFinal(wrapped))


def _store_wrapped_key(raw_key: bytes, key_path: Path):
    if _android_ready():
        _atomic_write_bytes(key_path, _android_keystore_wrap_key(raw_key))
        logger.info("key stored: android keystore")
    else:
        _atomic_write_bytes(key_path, raw_key)
        logger.info("key stored: file")


def _load_wrapped_key(key_path: Path) -> Optional[bytes]:
    if not key_path.exists():
        return None
    d = key_path.read_bytes()
    if _android_ready():
        try:
            k = _android_keystore_unwrap_key(d)
            if len(k) == 32:
                return k
        except Exception:
            logger.exception("key unwrap failed")
            return None
    return d[:32] if len(d) >= 32 else None


def load_key(key_path: Optional[Path] = None) -> Optional[bytes]:
    with _CRYPTO_LOCK:
        return _load_wrapped_key(key_path or app_config.KEY_PATH)


def get_or_create_key(key_path: Optional[Path] = None) -> bytes:
    key_path = key_path or app_config.KEY_PATH
    with _CRYPTO_LOCK:
        k = _load_wrapped_key(key_path)
        if k and len(k) == 32:
            return k
        key = AESGCM.generate_key(256)
        try:
            _store_wrapped_key(key, key_path)
        except Exception:
            logger.exception("keystore wrap failed; storing raw key")
            _atomic_write_bytes(key_path, key)
        return key


# -------------------------
# Encrypted SQLite DB
# -------------------------
class MedicineDB:
    def __init__(self, key: bytes, db_path: Optional[Path] = None, tmp_dir: Optional[Path] = None,
                 create: bool = True):
        self.key = key
        self.db_path = db_path or app_config.DB_PATH
        self.tmp_dir = tmp_dir or app_config.TMP_DIR
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        if create:
            self._ensure_db()
        elif not self.db_path.exists():
            raise RuntimeError("DB missing - open the app once to initialize.")

    def _tmp_path(self, prefix: str, suffix: str) -> Path:
        return self.tmp_dir / f"{prefix}.{uuid.uuid4().hex}{suffix}"

    def _ensure_db(self):
        with _CRYPTO_LOCK:
            if self.db_path.exists():
                return
            tmp = self._tmp_path("init", ".db")
            try:
                conn = sqlite3.connect(str(tmp))
                c = conn.cursor()
                c.execute("""
                    CREATE TABLE medicines (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        interval INTEGER NOT NULL,
                        is_current INTEGER DEFAULT 0,
                        notification_time TEXT      -- "HH:MM"
                    )
                """)
                c.execute("""
                    CREATE TABLE registries (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        medicine_id INTEGER NOT NULL,
                        date TEXT NOT NULL,         -- "YYYY-MM-DD"
                        took_medicine INTEGER NOT NULL,
                        FOREIGN KEY(medicine_id) REFERENCES medicines(id)
                    )
                """)
                c.execute("CREATE INDEX idx_registries_medicine ON registries(medicine_id, date)")
                conn.commit()
                conn.close()
                _atomic_write_bytes(self.db_path, aes_encrypt(tmp.read_bytes(), self.key))
                logger.info(f"created encrypted db {self.db_path.name}")
            finally:
                tmp.unlink(missing_ok=True)

    @contextmanager
    def _get_conn(self):
        tmp = self._tmp_path("work", ".db")
        try:
            with _CRYPTO_LOCK:
                if not self.db_path.exists():
                    self._ensure_db()
                pt = aes_decrypt(self.db_path.read_bytes(), self.key)
                _atomic_write_bytes(tmp, pt)

            conn = sqlite3.connect(str(tmp))
            conn.row_factory = sqlite3.Row
            try:
                yield conn
            finally:
                conn.close()

            with _CRYPTO_LOCK:
                _atomic_write_bytes(self.db_path, aes_encrypt(tmp.read_bytes(), self.key))
        finally:
            tmp.unlink(missing_ok=True)

    # -------------------------
    # Medicines
    # -------------------------
    def register_medicine(self, name: str, interval: int, notification_time: Optional[str] = None,
                          is_current: bool = False) -> Medicine:
        med = Medicine(name=name, interval=interval, is_current=is_current,
                       notification_time=notification_time)
        with self._get_conn() as conn:
            c = conn.cursor()
            if c.execute("SELECT 1 FROM medicines WHERE name=?", (med.name,)).fetchone():
                raise ValueError(f"medicine already registered: {med.name}")
            if med.is_current:
                c.execute("UPDATE medicines SET is_current=0")
            c.execute("""
                INSERT INTO medicines (name, interval, is_current, notification_time)
                VALUES (?, ?, ?, ?)
            """, (med.name, med.interval, int(med.is_current), med.notification_time))
            conn.commit()
            med.id = c.lastrowid
        logger.info(f"registered medicine id={med.id} {med.name} interval={med.interval}")
        return med

    def get_medicines(self, with_registries: bool = False) -> List[Medicine]:
        with self._get_conn() as conn:
            rows = conn.execute("SELECT * FROM medicines ORDER BY name").fetchall()
            meds = [self._medicine_from_row(row) for row in rows]
            if with_registries:
                for med in meds:
                    med.registries = self._load_registries(conn, med.id)
            return meds

    def get_medicine(self, name: str) -> Optional[Medicine]:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM medicines WHERE name=?", ((name or "").strip(),)).fetchone()
            if row is None:
                return None
            med = self._medicine_from_row(row)
            med.registries = self._load_registries(conn, med.id)
            return med

    def get_current(self) -> Optional[Medicine]:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM medicines WHERE is_current=1 LIMIT 1").fetchone()
            if row is None:
                return None
            med = self._medicine_from_row(row)
            med.registries = self._load_registries(conn, med.id)
            return med

    def set_current(self, name: str) -> Medicine:
        with self._get_conn() as conn:
            c = conn.cursor()
            row = c.execute("SELECT id FROM medicines WHERE name=?", ((name or "").strip(),)).fetchone()
            if row is None:
                raise ValueError(f"unknown medicine: {name}")
            c.execute("UPDATE medicines SET is_current=0")
            c.execute("UPDATE medicines SET is_current=1 WHERE id=?", (row["id"],))
            conn.commit()
        logger.info(f"current medicine set to {name}")
        return self.get_medicine(name)

    def update_medicine(self, med_id: int, **kwargs):
        unknown = set(kwargs) - set(_MEDICINE_COLUMNS)
        if unknown:
            raise ValueError(f"unknown medicine fields: {', '.join(sorted(unknown))}")
        if "interval" in kwargs and int(kwargs["interval"]) < 1:
            raise ValueError(f"interval must be at least 1 day, got {kwargs['interval']}")
        if kwargs.get("notification_time") is not None:
            hour, minute = parse_hm(kwargs["notification_time"])
            kwargs["notification_time"] = f"{hour:02d}:{minute:02d}"
        if not kwargs:
            return
        with self._get_conn() as conn:
            c = conn.cursor()
            if kwargs.get("is_current"):
                c.execute("UPDATE medicines SET is_current=0")
            sets, vals = [], []
            for k, v in kwargs.items():
                sets.append(f"{k}=?")
                vals.append(int(v) if k in ("interval", "is_current") else v)
            vals.append(med_id)
            c.execute(f"UPDATE medicines SET {','.join(sets)} WHERE id=?", vals)
            conn.commit()

    def delete_medicine(self, med_id: int):
        with self._get_conn() as conn:
            c = conn.cursor()
            c.execute("DELETE FROM registries WHERE medicine_id=?", (med_id,))
            c.execute("DELETE FROM medicines WHERE id=?", (med_id,))
            conn.commit()
        logger.info(f"deleted medicine id={med_id}")

    # -------------------------
    # Registries
    # -------------------------
    def add_registry(self, medicine_id: int, day: DayLike, took_medicine: bool) -> int:
        with self._get_conn() as conn:
            c = conn.cursor()
            c.execute("""
                INSERT INTO registries (medicine_id, date, took_medicine)
                VALUES (?, ?, ?)
            """, (medicine_id, fmt_day(day), int(bool(took_medicine))))
            conn.commit()
            return c.lastrowid

    def update_registry(self, registry_id: int, took_medicine: bool):
        with self._get_conn() as conn:
            conn.execute("UPDATE registries SET took_medicine=? WHERE id=?",
                         (int(bool(took_medicine)), registry_id))
            conn.commit()

    def delete_registries(self, medicine_id: int, day: DayLike) -> int:
        with self._get_conn() as conn:
            c = conn.cursor()
            c.execute("DELETE FROM registries WHERE medicine_id=? AND date=?", (medicine_id, fmt_day(day)))
            conn.commit()
            return c.rowcount

    def load_registries(self, medicine_id: int) -> List[Registry]:
        with self._get_conn() as conn:
            return self._load_registries(conn, medicine_id)

    def stats(self) -> Dict[str, int]:
        with self._get_conn() as conn:
            meds = conn.execute("SELECT COUNT(*) FROM medicines").fetchone()[0]
            regs = conn.execute("SELECT COUNT(*) FROM registries").fetchone()[0]
        return {"medicines": meds, "registries": regs}

    @staticmethod
    def _load_registries(conn, medicine_id: int) -> List[Registry]:
        rows = conn.execute(
            "SELECT id, date, took_medicine FROM registries WHERE medicine_id=? ORDER BY id",
            (medicine_id,)
        ).fetchall()
        return [Registry(date=date.fromisoformat(r["date"]), took_medicine=bool(r["took_medicine"]),
                         id=r["id"]) for r in rows]

    @staticmethod
    def _medicine_from_row(row) -> Medicine:
        return Medicine(name=row["name"], interval=row["interval"], is_current=bool(row["is_current"]),
                        notification_time=row["notification_time"], id=row["id"])
