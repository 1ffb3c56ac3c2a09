from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Optional
from ..deps import Principal, assert_branch_access, get_store, require_branch_access, require_permission
from ..rbac import MEMBERS_WRITE, STAFF_READ, SYSTEM_AUDIT_LOGS
from ..responses import require_uuid, success
from ..store import RowStore

router = APIRouter(prefix="/action-logs", tags=["action-logs"])

LOG_EMBED = {
    "branch_staff": ("staff_id", "first_name, last_name, role, branch_id"),
    "members": ("member_id", "first_name, last_name"),
}


class ActionLogIn(BaseModel):
    staffId: str
    actionType: str = Field(min_length=1, max_length=50, pattern=r"^[A-Z][A-Z0-9_]*$")
    description: str = Field(min_length=1, max_length=500)
    memberId: Optional[str] = None


def _page(limit: int, offset: int):
    return min(limit or 50, 200), max(offset or 0, 0)


@router.get("/branch/{branch_id}")
def list_branch_action_logs(
    branch_id: str,
    limit: int = 50,
    offset: int = 0,
    principal: Principal = Depends(require_branch_access(SYSTEM_AUDIT_LOGS)),
    store: RowStore = Depends(get_store),
):
    limit, offset = _page(limit, offset)
    staff = store.select("branch_staff", "id", filters={"branch_id": require_uuid(branch_id, "branch_id")})
    rows = store.select(
        "staff_actions_log",
        filters={"staff_id__in": [s["id"] for s in staff]},
        embed=LOG_EMBED,
        order_by="created_at",
        descending=True,
        limit=limit,
        offset=offset,
    )
    return success(rows, pagination={"limit": limit, "offset": offset, "count": len(rows)})


@router.get("/staff/{staff_id}")
def list_staff_action_logs(
    staff_id: str,
    limit: int = 50,
    offset: int = 0,
    principal: Principal = Depends(require_permission(STAFF_READ)),
    store: RowStore = Depends(get_store),
):
    limit, offset = _page(limit, offset)
    staff = store.select_one("branch_staff", "id, branch_id", filters={"id": require_uuid(staff_id, "staff_id")})
    if not staff:
        raise HTTPException(status_code=404, detail="staff member not found")
    assert_branch_access(principal, staff["branch_id"])
    rows = store.select(
        "staff_actions_log",
        filters={"staff_id": staff["id"]},
        embed={"members": LOG_EMBED["members"]},
        order_by="created_at",
        descending=True,
        limit=limit,
        offset=offset,
    )
    return success(rows, pagination={"limit": limit, "offset": offset, "count": len(rows)})


@router.post("", status_code=201)
def create_action_log(
    data: ActionLogIn,
    principal: Principal = Depends(require_permission(MEMBERS_WRITE)),
    store: RowStore = Depends(get_store),
):
    staff = store.select_one("branch_staff", "id, branch_id", filters={"id": require_uuid(data.staffId, "staffId")})
    if not staff:
        raise HTTPException(status_code=404, detail="staff member not found")
    assert_branch_access(principal, staff["branch_id"])
    member_id = require_uuid(data.memberId, "memberId") if data.memberId else None

    rows = store.insert(
        "staff_actions_log",
        {
            "staff_id": staff["id"],
            "action_type": data.actionType,
            "description": data.description,
            "member_id": member_id,
            "created_at": datetime.now(timezone.utc),
        },
    )
    return success(rows[0] if rows else None, message="Action logged")
