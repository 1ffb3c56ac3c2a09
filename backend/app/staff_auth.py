"""
Staff PIN authorization shared by the PIN login and renewal endpoints.

Order matters: the attempt tracker is consulted before any lookup so a locked
staff id gets 429 without touching the store, and unknown staff ids count as
failures so they can't be told apart from a wrong PIN.
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException

from .config import settings
from .logs import json_log
from .security import compare_legacy_pin, hash_session_token, pin_attempt_tracker, verify_pin

STAFF_COLUMNS = "id, first_name, last_name, email, role, branch_id, pin, pin_hash, is_active"


def _rpc_pin_check(store, staff_id: str, pin: str) -> Optional[bool]:
    try:
        rows = store.rpc("verify_staff_pin", {"p_staff_id": staff_id, "p_pin": pin})
    except Exception as exc:
        json_log("info", "pin.rpc_unavailable", error=type(exc).__name__)
        return None
    if not rows:
        return False
    row = rows[0]
    for key in ("verify_staff_pin", "is_valid", "valid"):
        if key in row:
            return bool(row[key])
    return None


def check_staff_pin(store, staff: dict, pin: str) -> bool:
    result = _rpc_pin_check(store, str(staff["id"]), pin)
    if result is not None:
        return result
    if staff.get("pin_hash"):
        return verify_pin(pin, staff["pin_hash"])
    if staff.get("pin"):
        return compare_legacy_pin(pin, staff["pin"])
    return False


def _locked(check: dict) -> HTTPException:
    locked_until = check["locked_until"]
    return HTTPException(
        status_code=429,
        detail={
            "error": "Too many failed attempts",
            "message": "Staff PIN is temporarily locked. Try again later.",
            "lockedUntil": locked_until.isoformat() if locked_until else None,
        },
    )


def _rejected(staff_id: str) -> HTTPException:
    pin_attempt_tracker.record_failed_attempt(staff_id)
    check = pin_attempt_tracker.check_attempts(staff_id)
    if not check["allowed"]:
        return _locked(check)
    return HTTPException(
        status_code=401,
        detail={
            "error": "Invalid PIN",
            "message": "The staff PIN is incorrect",
            "attemptsRemaining": check["remaining_attempts"],
        },
    )


def authorize_staff_pin(store, staff_id: str, pin: str) -> dict:
    """Return the staff row for a correct PIN, raising 429/401 otherwise."""
    staff_id = str(staff_id)
    check = pin_attempt_tracker.check_attempts(staff_id)
    if not check["allowed"]:
        raise _locked(check)

    staff = store.select_one("branch_staff", STAFF_COLUMNS, filters={"id": staff_id})
    if not staff or staff.get("is_active") is False:
        raise _rejected(staff_id)
    if not check_staff_pin(store, staff, pin):
        json_log("warning", "pin.rejected", staff_id=staff_id)
        raise _rejected(staff_id)

    pin_attempt_tracker.reset_attempts(staff_id)
    return staff


def touch_last_active(store, staff_id) -> None:
    try:
        store.update("branch_staff", {"last_active": datetime.now(timezone.utc)}, {"id": str(staff_id)}, returning=None)
    except Exception as exc:
        json_log("warning", "staff.last_active_failed", staff_id=str(staff_id), error=str(exc))


def open_staff_session(store, staff: dict) -> dict:
    token = secrets.token_urlsafe(32)
    expires = datetime.now(timezone.utc) + timedelta(days=settings.staff_session_days)
    store.insert(
        "staff_sessions",
        {
            "staff_id": str(staff["id"]),
            "branch_id": str(staff["branch_id"]),
            "role": staff["role"],
            "token_hash": hash_session_token(token),
            "expires_at": expires,
            "is_active": True,
        },
        returning="id",
    )
    return {"sessionToken": token, "expiresAt": expires.isoformat()}


def public_staff(staff: dict) -> dict:
    return {
        "id": staff["id"],
        "name": f"{staff.get('first_name') or ''} {staff.get('last_name') or ''}".strip(),
        "email": staff.get("email"),
        "role": staff.get("role"),
        "branch_id": staff.get("branch_id"),
    }
