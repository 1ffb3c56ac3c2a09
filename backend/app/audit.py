"""
Audit trail writers.

`audit_logs` rows are what the analytics endpoints aggregate, so member
creation and renewal rows carry a flattened snapshot of the financial fields
under `request_data.body`. Everything else stores only the shape of the
request. Writes here never fail the calling request.
"""
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder

from .logs import json_log

FINANCIAL_ACTIONS = frozenset({"CREATE_MEMBER", "PROCESS_MEMBER_RENEWAL"})
SENSITIVE_KEYS = frozenset({"pin", "password", "national_id", "nationalId", "pin_hash", "staffPin", "staff_pin"})


def _first(*values):
    for v in values:
        if v:
            return v
    return None


def _package_info(store, package_id) -> Optional[dict]:
    if not package_id:
        return None
    try:
        return store.select_one("packages", "name, type, price", filters={"id": package_id})
    except Exception as exc:
        json_log("warning", "audit.package_lookup_failed", package_id=str(package_id), error=str(exc))
        return None


def sanitize_request_body(store, body: Optional[dict], action: str) -> Optional[dict]:
    if not body:
        return None

    if action in FINANCIAL_ACTIONS:
        package_id = _first(body.get("packageId"), body.get("package_id"))
        pkg = _package_info(store, package_id) or {}
        package_type = _first(pkg.get("type"), body.get("package_type"), body.get("packageType"))
        return {
            "package_price": _first(
                body.get("customPrice"),
                body.get("amountPaid"),
                body.get("package_price"),
                body.get("packagePrice"),
                body.get("totalAmount"),
            ),
            "payment_method": _first(body.get("paymentMethod"), body.get("payment_method")),
            "package_name": _first(pkg.get("name"), body.get("package_name"), body.get("packageName")) or "Unknown Package",
            "package_type": package_type,
            "package_id": str(package_id) if package_id else None,
            "duration_months": _first(body.get("duration"), body.get("duration_months"), body.get("durationMonths")),
            "member_type": package_type,
            "branch_id": _first(body.get("branchId"), body.get("branch_id")),
            "staff_id": _first(body.get("staffId"), body.get("staff_id")),
            "staff_pin_provided": "YES" if body.get("staffPin") else "NO",
            "member_first_name": _first(body.get("firstName"), body.get("first_name")),
            "member_last_name": _first(body.get("lastName"), body.get("last_name")),
            "member_email": body.get("email"),
            "start_date": body.get("startDate"),
            "expiry_date": body.get("expiryDate"),
            "total_amount": _first(body.get("amountPaid"), body.get("totalAmount")),
        }

    return {
        "operation_type": action,
        "resource_count": len(body) if isinstance(body, list) else 1,
        "has_sensitive_data": bool(body.get("pin") or body.get("password") or body.get("national_id")),
        "data_keys": [k for k in body.keys() if k not in SENSITIVE_KEYS],
    }


def sanitize_response(payload: Optional[dict], action: str) -> Optional[dict]:
    if not payload:
        return None
    status = payload.get("status")
    data = payload.get("data")
    base = {
        "status": status,
        "success": status == "success",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if action in FINANCIAL_ACTIONS:
        d = data if isinstance(data, dict) else {}
        member = d.get("member") or {}
        renewal = d.get("renewal") or {}
        package = d.get("package") or {}
        member_name = _first(d.get("member_name"), d.get("memberName"))
        if not member_name and d.get("first_name") and d.get("last_name"):
            member_name = f"{d['first_name']} {d['last_name']}"
        if not member_name and member.get("first_name") and member.get("last_name"):
            member_name = f"{member['first_name']} {member['last_name']}"
        return {
            **base,
            "member_id": _first(d.get("id") if not renewal else None, member.get("id"), d.get("memberId")),
            "renewal_id": renewal.get("id"),
            "transaction_successful": status == "success",
            "amount_processed": _first(renewal.get("amount_paid"), d.get("amount_paid"), d.get("package_price"), d.get("amountPaid")),
            "new_expiry_date": _first(member.get("expiry_date"), renewal.get("new_expiry"), d.get("expiry_date")),
            "member_name": member_name,
            "package_name": _first(package.get("name"), d.get("package_name"), d.get("packageName")),
            "message": payload.get("message"),
        }

    if isinstance(data, list):
        record_count = len(data)
    else:
        record_count = 1 if data else 0
    return {**base, "record_count": record_count, "has_data": bool(data), "message": payload.get("message")}


def _client_meta(request) -> dict:
    if request is None:
        return {"ip_address": None, "user_agent": None, "method": None, "path": None}
    client = getattr(request, "client", None)
    return {
        "ip_address": getattr(client, "host", None),
        "user_agent": request.headers.get("user-agent"),
        "method": request.method,
        "path": request.url.path,
    }


def _audit_identity(store, principal, action: str, body: Optional[dict]):
    user_id = principal.id if principal else None
    user_email = principal.email if principal else None
    staff_id = (body or {}).get("staffId")
    if action in FINANCIAL_ACTIONS and staff_id:
        # Attribute money-handling rows to the staff member who entered the PIN.
        try:
            staff = store.select_one("branch_staff", "id, email", filters={"id": staff_id})
        except Exception as exc:
            json_log("warning", "audit.staff_lookup_failed", staff_id=str(staff_id), error=str(exc))
            staff = None
        if staff:
            user_id, user_email = str(staff["id"]), staff.get("email")
    return user_id, user_email


def record_audit_event(
    store,
    *,
    principal,
    action: str,
    resource_type: str,
    request=None,
    body: Optional[dict] = None,
    response: Optional[dict] = None,
    resource_id: Any = None,
    branch_id: Any = None,
    status_code: int = 200,
    success: bool = True,
    error_message: Optional[str] = None,
) -> Optional[dict]:
    try:
        user_id, user_email = _audit_identity(store, principal, action, body)
        if not user_id or not user_email:
            json_log("warning", "audit.skipped", action=action, reason="missing user identity")
            return None
        meta = _client_meta(request)
        row = {
            "user_id": user_id,
            "user_email": user_email,
            "action": action,
            "resource_type": resource_type,
            "resource_id": str(resource_id) if resource_id else None,
            "branch_id": str(branch_id) if branch_id else None,
            "ip_address": meta["ip_address"],
            "user_agent": meta["user_agent"],
            "timestamp": datetime.now(timezone.utc),
            "success": success,
            "status_code": status_code,
            "error_message": error_message,
            # jsonb columns: dates/decimals/uuids must already be JSON-safe.
            "request_data": jsonable_encoder({
                "method": meta["method"],
                "path": meta["path"],
                "body": sanitize_request_body(store, body, action),
            }),
            "response_data": jsonable_encoder(sanitize_response(response, action)),
        }
        rows = store.insert("audit_logs", row, returning="id")
        return rows[0] if rows else None
    except Exception as exc:
        json_log("warning", "audit.write_failed", action=action, error=str(exc))
        return None


def record_staff_action(store, *, staff_id, action_type: str, description: str, member_id=None) -> Optional[dict]:
    if not staff_id:
        return None
    try:
        rows = store.insert(
            "staff_actions_log",
            {
                "staff_id": str(staff_id),
                "action_type": action_type,
                "description": description,
                "member_id": str(member_id) if member_id else None,
                "created_at": datetime.now(timezone.utc),
            },
        )
        return rows[0] if rows else None
    except Exception as exc:
        json_log("warning", "staff_action.write_failed", action_type=action_type, error=str(exc))
        return None
