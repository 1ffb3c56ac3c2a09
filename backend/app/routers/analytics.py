from fastapi import APIRouter, Depends, HTTPException, Query, Request
from datetime import datetime, timezone
from typing import Optional
from ..analytics import (
    AnalyticsRangeError,
    activity_limit,
    build_activity_feed,
    build_branch_analytics,
    effective_limit,
    fetch_activity,
    resolve_range,
)
from ..audit import record_audit_event
from ..deps import Principal, get_store, require_branch_access
from ..rbac import ANALYTICS_READ
from ..responses import require_uuid, success
from ..store import RowStore
from ..validation import AnalyticsPeriod

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/branch/{branch_id}")
def branch_analytics(
    branch_id: str,
    request: Request,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    period: Optional[AnalyticsPeriod] = None,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    principal: Principal = Depends(require_branch_access(ANALYTICS_READ)),
    store: RowStore = Depends(get_store),
):
    branch_id = require_uuid(branch_id, "branch_id")
    try:
        start, end = resolve_range(startDate, endDate, period)
    except AnalyticsRangeError as exc:
        raise HTTPException(status_code=400, detail={"error": exc.error, "message": exc.message})

    result_limit = effective_limit(limit)
    data = build_branch_analytics(store, branch_id, start, end, result_limit)
    body = success(
        data,
        meta={
            "resultLimit": result_limit,
            "queriedAt": datetime.now(timezone.utc).isoformat(),
            "usingAuditLogs": True,
        },
    )
    record_audit_event(
        store,
        principal=principal,
        action="READ_ANALYTICS",
        resource_type="analytics",
        request=request,
        response={"status": "success", "data": None},
        branch_id=branch_id,
    )
    return body


@router.get("/branch/{branch_id}/activity")
def branch_activity(
    branch_id: str,
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(require_branch_access(ANALYTICS_READ)),
    store: RowStore = Depends(get_store),
):
    n = activity_limit(limit)
    rows = fetch_activity(store, require_uuid(branch_id, "branch_id"), n)
    feed = build_activity_feed(rows)
    feed["period"] = {"generated": datetime.now(timezone.utc).isoformat(), "limit": n}
    return success(feed)
