"""
Branch analytics aggregated from the audit trail.

Three reads per request (current-period financial audit rows, active branch
packages, previous-period financial audit rows) and everything else is an
in-memory pass over those rows. Amounts come out of the semi-structured
`request_data.body` snapshot written by `audit.py`, trying
`package_price`, then `total_amount`, then `amount_paid`.
"""
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from .audit import FINANCIAL_ACTIONS
from .logs import json_log

AMOUNT_KEYS = ("package_price", "total_amount", "amount_paid")

MAX_RANGE_DAYS = 730
DEFAULT_ROW_LIMIT = 10000
MAX_ROW_LIMIT = 50000
ACTIVITY_DEFAULT_LIMIT = 50
ACTIVITY_MAX_LIMIT = 100

# Renewals above this amount count a share of their value as "upgrade" revenue.
# Heuristic: nothing in the audit row says a package actually changed.
UPGRADE_THRESHOLD = 50
UPGRADE_SHARE = 0.1

PERIOD_DAYS = {"day": 1, "week": 7, "month": 30, "quarter": 90, "year": 365}

PAYMENT_LABELS = {"cash": "Cash", "card": "Card"}

ACTIVITY_DESCRIPTIONS = {
    "CREATE_MEMBER": "New member registration processed",
    "PROCESS_MEMBER_RENEWAL": "Member renewal processed",
    "UPDATE_MEMBER": "Member information updated",
    "DELETE_MEMBER": "Member record deleted",
}


class AnalyticsRangeError(ValueError):
    def __init__(self, error: str, message: str):
        super().__init__(message)
        self.error = error
        self.message = message


@dataclass
class AuditData:
    logs: List[dict] = field(default_factory=list)
    packages: List[dict] = field(default_factory=list)
    previous_logs: List[dict] = field(default_factory=list)


def _parse_ts(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, date):
        ts = datetime(value.year, value.month, value.day)
    else:
        ts = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


def resolve_range(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    period: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """
    Explicit `[start_date, end_date)` when both are given (start before end, at
    most two years apart). Otherwise a window of `period` ending now, or the
    current calendar month when no period is asked for.
    """
    now = now or datetime.now(timezone.utc)
    if start_date and end_date:
        try:
            start = _parse_ts(start_date)
            end = _parse_ts(end_date)
        except ValueError:
            raise AnalyticsRangeError("Invalid date", "startDate and endDate must be ISO 8601 dates")
        if math.ceil((end - start).total_seconds() / 86400) > MAX_RANGE_DAYS:
            raise AnalyticsRangeError("Date range too large", "Maximum date range is 2 years")
        if start >= end:
            raise AnalyticsRangeError("Invalid date range", "Start date must be before end date")
        return start, end
    if period:
        if period not in PERIOD_DAYS:
            raise AnalyticsRangeError("Invalid period", f"period must be one of: {', '.join(PERIOD_DAYS)}")
        return now - timedelta(days=PERIOD_DAYS[period]), now
    return _month_bounds(now)


def effective_limit(limit: Optional[int]) -> int:
    return min(limit or DEFAULT_ROW_LIMIT, MAX_ROW_LIMIT)


def _to_float(value) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    return amount if math.isfinite(amount) else 0.0


def _body(log: dict) -> dict:
    request_data = log.get("request_data") or {}
    if not isinstance(request_data, dict):
        return {}
    body = request_data.get("body")
    return body if isinstance(body, dict) else {}


def extract_amount(body: dict) -> float:
    for key in AMOUNT_KEYS:
        if body.get(key):
            return _to_float(body[key])
    return 0.0


def fetch_audit_data(store, branch_id: str, start: datetime, end: datetime, limit: int) -> AuditData:
    span = end - start
    prev_start, prev_end = start - span, start
    base = {"branch_id": branch_id, "action__in": list(FINANCIAL_ACTIONS), "success": True}

    logs = store.select(
        "audit_logs",
        filters={**base, "timestamp__gte": start, "timestamp__lt": end},
        order_by="timestamp",
        descending=True,
        limit=limit,
    )
    packages = store.select(
        "packages",
        filters={"branch_id": branch_id, "is_active": True},
        order_by="created_at",
        descending=True,
        limit=limit,
    )
    previous = store.select(
        "audit_logs",
        "action, request_data",
        filters={**base, "timestamp__gte": prev_start, "timestamp__lt": prev_end},
        limit=limit,
    )
    json_log(
        "info",
        "analytics.fetched",
        branch_id=str(branch_id),
        logs=len(logs),
        packages=len(packages),
        previous_logs=len(previous),
    )
    return AuditData(logs=logs, packages=packages, previous_logs=previous)


def build_revenue(data: AuditData, start: datetime, end: datetime) -> dict:
    total = renewals = new_memberships = upgrades = 0.0
    for log in data.logs:
        amount = extract_amount(_body(log))
        if amount <= 0:
            continue
        total += amount
        if log.get("action") == "PROCESS_MEMBER_RENEWAL":
            renewals += amount
            if amount > UPGRADE_THRESHOLD:
                upgrades += amount * UPGRADE_SHARE
        elif log.get("action") == "CREATE_MEMBER":
            new_memberships += amount

    previous = sum(a for a in (extract_amount(_body(log)) for log in data.previous_logs) if a > 0)
    change = total - previous
    change_percent = (change / previous) * 100 if previous > 0 else 0

    days = math.ceil((end - start).total_seconds() / 86400)
    return {
        "total": total,
        "renewals": renewals,
        "newMemberships": new_memberships,
        "upgrades": upgrades,
        "comparison": {"previous": previous, "change": change, "changePercent": change_percent},
        "dailyAverage": total / days if days > 0 else 0,
    }


def _member_name(body: dict, response: dict) -> str:
    if response.get("member_name"):
        return response["member_name"]
    if body.get("member_first_name") and body.get("member_last_name"):
        return f"{body['member_first_name']} {body['member_last_name']}"
    return "Unknown Member"


def build_transactions(logs: List[dict]) -> List[dict]:
    out = []
    for log in logs:
        body = _body(log)
        response = log.get("response_data") or {}
        package_name = body.get("package_name")
        if not package_name or package_name == "Unknown Package":
            package_name = "Unknown Package"
        method = body.get("payment_method")
        email = log.get("user_email") or ""
        out.append({
            "id": log.get("id"),
            "date": log.get("timestamp"),
            "memberName": _member_name(body, response),
            "type": "New Membership" if log.get("action") == "CREATE_MEMBER" else "Renewal",
            "packageName": package_name,
            "amount": extract_amount(body),
            "paymentMethod": PAYMENT_LABELS.get(method, method) if method else "Unknown",
            "processedBy": email.split("@")[0] if email else "Unknown Staff",
            "memberStatus": "Active" if response.get("success") else "Pending",
        })
    return out


def build_member_analytics(logs: List[dict]) -> dict:
    new_members = sum(1 for log in logs if log.get("action") == "CREATE_MEMBER")
    renewals = sum(1 for log in logs if log.get("action") == "PROCESS_MEMBER_RENEWAL")

    counts: Dict[str, int] = {}
    for log in logs:
        body = _body(log)
        key = body.get("member_type") or body.get("package_type") or "unknown"
        counts[key] = counts.get(key, 0) + 1
    total_rows = len(logs)
    distribution = [
        {"type": k, "count": c, "percentage": (c / total_rows) * 100 if total_rows else 0}
        for k, c in counts.items()
    ]

    return {
        "total": new_members + renewals,
        "active": new_members + renewals,
        "expired": 0,
        "newThisPeriod": new_members,
        "renewalsThisPeriod": renewals,
        "retentionRate": (renewals / (new_members + renewals)) * 100 if renewals > 0 and new_members > 0 else 0,
        "packageDistribution": distribution,
    }


def build_staff_performance(logs: List[dict]) -> List[dict]:
    stats: Dict[str, dict] = {}
    for log in logs:
        email = log.get("user_email")
        if not email:
            continue
        row = stats.setdefault(email, {"newMembers": 0, "renewals": 0, "revenue": 0.0, "totalTransactions": 0})
        row["revenue"] += extract_amount(_body(log))
        row["totalTransactions"] += 1
        if log.get("action") == "CREATE_MEMBER":
            row["newMembers"] += 1
        elif log.get("action") == "PROCESS_MEMBER_RENEWAL":
            row["renewals"] += 1

    out = [
        {
            "id": email,
            "name": email.split("@")[0],
            "role": "Staff",
            "newMembers": s["newMembers"],
            "renewals": s["renewals"],
            "totalTransactions": s["totalTransactions"],
            "revenue": s["revenue"],
        }
        for email, s in stats.items()
    ]
    out.sort(key=lambda r: r["revenue"], reverse=True)
    return out


def build_package_performance(logs: List[dict], packages: List[dict]) -> List[dict]:
    out = []
    for pkg in packages:
        pkg_id = str(pkg.get("id"))
        new_memberships = renewals = 0
        revenue = 0.0
        for log in logs:
            body = _body(log)
            if str(body.get("package_id")) != pkg_id:
                continue
            amount = extract_amount(body)
            if amount <= 0:
                continue
            revenue += amount
            if log.get("action") == "CREATE_MEMBER":
                new_memberships += 1
            elif log.get("action") == "PROCESS_MEMBER_RENEWAL":
                renewals += 1
        out.append({
            "id": pkg.get("id"),
            "name": pkg.get("name"),
            "type": pkg.get("type"),
            "price": _to_float(pkg.get("price")),
            "sales": new_memberships + renewals,
            "revenue": revenue,
            "newMemberships": new_memberships,
            "renewals": renewals,
        })
    out.sort(key=lambda r: r["revenue"], reverse=True)
    return out


def build_time_series(logs: List[dict], start: datetime, end: datetime) -> dict:
    daily: Dict[str, dict] = {}
    day = start.astimezone(timezone.utc).date()
    last = (end - timedelta(microseconds=1)).astimezone(timezone.utc).date()
    while day <= last:
        daily[day.isoformat()] = {"revenue": 0.0, "transactions": 0, "newMembers": 0, "renewals": 0}
        day += timedelta(days=1)

    for log in logs:
        try:
            ts = _parse_ts(log.get("timestamp"))
        except ValueError:
            continue
        if ts is None:
            continue
        bucket = daily.get(ts.astimezone(timezone.utc).date().isoformat())
        if bucket is None:
            continue
        amount = extract_amount(_body(log))
        if amount <= 0:
            continue
        bucket["revenue"] += amount
        bucket["transactions"] += 1
        if log.get("action") == "CREATE_MEMBER":
            bucket["newMembers"] += 1
        elif log.get("action") == "PROCESS_MEMBER_RENEWAL":
            bucket["renewals"] += 1

    days = [{"date": d, **v} for d, v in daily.items()]
    peak = {"date": "", "revenue": 0}
    if days:
        best = days[0]
        for d in days[1:]:
            if d["revenue"] > best["revenue"]:
                best = d
        peak = {"date": best["date"], "revenue": best["revenue"]}
    return {
        "daily": days,
        "totalDays": len(days),
        "peakDay": peak,
        "averageDaily": sum(d["revenue"] for d in days) / len(days) if days else 0,
    }


def build_branch_analytics(store, branch_id: str, start: datetime, end: datetime, limit: int) -> dict:
    data = fetch_audit_data(store, branch_id, start, end, limit)
    return {
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "revenue": build_revenue(data, start, end),
        "transactions": build_transactions(data.logs),
        "memberAnalytics": build_member_analytics(data.logs),
        "packagePerformance": build_package_performance(data.logs, data.packages),
        "staffPerformance": build_staff_performance(data.logs),
        "timeAnalytics": build_time_series(data.logs, start, end),
    }


def describe_activity(log: dict) -> str:
    action = log.get("action") or ""
    return ACTIVITY_DESCRIPTIONS.get(action) or action.replace("_", " ").lower()


def activity_limit(limit: Optional[int]) -> int:
    return min(limit or ACTIVITY_DEFAULT_LIMIT, ACTIVITY_MAX_LIMIT)


def fetch_activity(store, branch_id: str, limit: int) -> List[dict]:
    return store.select(
        "audit_logs",
        filters={"branch_id": branch_id, "action__not_like": "%READ%"},
        order_by="timestamp",
        descending=True,
        limit=limit,
    )


def build_activity_feed(rows: List[dict]) -> dict:
    activities: List[Dict[str, Any]] = [
        {
            "id": r.get("id"),
            "timestamp": r.get("timestamp"),
            "action": r.get("action"),
            "resourceType": r.get("resource_type"),
            "userEmail": r.get("user_email"),
            "success": r.get("success"),
            "description": describe_activity(r),
            "details": {
                "statusCode": r.get("status_code"),
                "resourceId": r.get("resource_id"),
                "errorMessage": r.get("error_message"),
            },
        }
        for r in rows
    ]
    return {
        "activities": activities,
        "stats": {
            "totalActivities": len(activities),
            "successfulActivities": sum(1 for a in activities if a["success"]),
            "failedActivities": sum(1 for a in activities if not a["success"]),
            "uniqueUsers": len({a["userEmail"] for a in activities}),
            "lastActivity": activities[0]["timestamp"] if activities else None,
        },
    }
