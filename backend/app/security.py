import hashlib
import hmac
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from passlib.context import CryptContext

from .config import settings
from .logs import json_log

# 12 rounds for PINs and passwords alike.
_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)

PIN_RE = re.compile(r"[0-9]{4}")

WEAK_PINS = frozenset({
    "0000", "1111", "2222", "3333", "4444", "5555", "6666", "7777", "8888", "9999",
    "1234", "4321", "0123", "3210",
})


def is_pin_format(pin) -> bool:
    return isinstance(pin, str) and PIN_RE.fullmatch(pin) is not None


def hash_pin(pin: str) -> str:
    if not is_pin_format(pin):
        raise ValueError("PIN must be exactly 4 digits")
    return _pwd_context.hash(pin)


def verify_pin(pin: str, hashed: Optional[str]) -> bool:
    # Malformed input or a broken hash is a plain "no"; callers never see an exception.
    if not pin or not hashed:
        return False
    if not is_pin_format(pin):
        return False
    try:
        return _pwd_context.verify(pin, hashed)
    except Exception as exc:
        json_log("warning", "pin.verify_error", error=type(exc).__name__)
        return False


def validate_pin(pin: Optional[str]) -> dict:
    if not pin:
        return {"is_valid": False, "error": "PIN is required"}
    if not is_pin_format(pin):
        return {"is_valid": False, "error": "PIN must be exactly 4 digits"}
    if pin in WEAK_PINS:
        return {"is_valid": False, "error": "PIN is too weak. Avoid sequential or repeated digits"}
    return {"is_valid": True, "error": None}


def compare_legacy_pin(pin: str, stored: Optional[str]) -> bool:
    # Staff rows created before hashing was introduced still carry a plaintext `pin`.
    if not pin or not stored:
        return False
    return hmac.compare_digest(pin.encode("utf-8"), stored.encode("utf-8"))


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def needs_rehash(hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return _pwd_context.needs_update(hashed)


def hash_session_token(token: str) -> str:
    # Store sessions as a one-way hash so a DB leak doesn't immediately grant access.
    return "sha256:" + hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class _AttemptRecord:
    count: int
    last_attempt: float


class PinAttemptTracker:
    """
    Failed PIN attempts per staff id.

    Failures inside `attempt_window` accumulate; reaching `max_attempts` locks the
    staff id out for `lockout` seconds counted from the last failure. A quiet
    period longer than the window forgets the record, as does a success.

    State is process-local: a restart clears it and separate server processes
    each keep their own counts.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        lockout_seconds: float = 15 * 60,
        attempt_window_seconds: float = 5 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self.attempt_window_seconds = attempt_window_seconds
        self._clock = clock
        self._attempts: Dict[str, _AttemptRecord] = {}
        # Sync FastAPI handlers run on a thread pool.
        self._lock = threading.Lock()
        self._purge_timer: Optional[threading.Timer] = None
        self._purge_interval: Optional[float] = None

    def _expired(self, record: _AttemptRecord, now: float) -> bool:
        if record.count >= self.max_attempts:
            return now >= record.last_attempt + self.lockout_seconds
        return now - record.last_attempt > self.attempt_window_seconds

    def check_attempts(self, staff_id: str) -> dict:
        now = self._clock()
        with self._lock:
            record = self._attempts.get(staff_id)
            if record is None:
                return {"allowed": True, "remaining_attempts": self.max_attempts, "locked_until": None}

            if record.count >= self.max_attempts:
                lockout_end = record.last_attempt + self.lockout_seconds
                if now < lockout_end:
                    return {
                        "allowed": False,
                        "remaining_attempts": 0,
                        "locked_until": datetime.fromtimestamp(lockout_end, tz=timezone.utc),
                    }
                del self._attempts[staff_id]
                return {"allowed": True, "remaining_attempts": self.max_attempts, "locked_until": None}

            if now - record.last_attempt > self.attempt_window_seconds:
                del self._attempts[staff_id]
                return {"allowed": True, "remaining_attempts": self.max_attempts, "locked_until": None}

            return {
                "allowed": True,
                "remaining_attempts": self.max_attempts - record.count,
                "locked_until": None,
            }

    def record_failed_attempt(self, staff_id: str) -> None:
        now = self._clock()
        with self._lock:
            record = self._attempts.get(staff_id)
            if record is None or self._expired(record, now):
                self._attempts[staff_id] = _AttemptRecord(count=1, last_attempt=now)
                return
            record.count += 1
            record.last_attempt = now
            if record.count == self.max_attempts:
                json_log("warning", "pin.lockout", staff_id=staff_id, lockout_seconds=self.lockout_seconds)

    def reset_attempts(self, staff_id: str) -> None:
        with self._lock:
            self._attempts.pop(staff_id, None)

    def cleanup(self) -> int:
        cutoff = self._clock() - self.lockout_seconds
        with self._lock:
            stale = [sid for sid, rec in self._attempts.items() if rec.last_attempt < cutoff]
            for sid in stale:
                del self._attempts[sid]
        if stale:
            json_log("info", "pin.attempts.purged", count=len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)

    def _schedule_purge(self) -> None:
        timer = threading.Timer(self._purge_interval, self._purge_tick)
        timer.daemon = True
        self._purge_timer = timer
        timer.start()

    def _purge_tick(self) -> None:
        try:
            self.cleanup()
        except Exception as exc:
            json_log("error", "pin.attempts.purge_failed", error=str(exc))
        if self._purge_interval is not None:
            self._schedule_purge()

    def start_purge_timer(self, interval_seconds: float) -> None:
        self.stop_purge_timer()
        self._purge_interval = interval_seconds
        self._schedule_purge()

    def stop_purge_timer(self) -> None:
        self._purge_interval = None
        if self._purge_timer is not None:
            self._purge_timer.cancel()
            self._purge_timer = None


pin_attempt_tracker = PinAttemptTracker(
    max_attempts=settings.pin_max_attempts,
    lockout_seconds=settings.pin_lockout_minutes * 60,
    attempt_window_seconds=settings.pin_attempt_window_minutes * 60,
)
