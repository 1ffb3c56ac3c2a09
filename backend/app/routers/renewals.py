from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import List, Optional
from ..audit import record_audit_event
from ..dates import add_months, as_date, today
from ..deps import Principal, assert_branch_access, get_store, require_branch_access, require_permission
from ..logs import json_log
from ..rbac import RENEWALS_PROCESS, RENEWALS_READ
from ..responses import require_uuid, success, transaction_failed
from ..staff_auth import authorize_staff_pin, public_staff
from ..store import RowStore
from ..transactions import execute_transaction, renewal_operations
from ..validation import PaymentMethod, Pin

router = APIRouter(prefix="/renewals", tags=["renewals"])

RENEWAL_EMBED = {
    "members": ("member_id", "first_name, last_name, email, branch_id"),
    "packages": ("package_id", "name, type, price"),
    "branch_staff": ("renewed_by_staff_id", "first_name, last_name, role"),
}


class RenewalIn(BaseModel):
    memberId: str
    packageId: str
    staffId: str
    staffPin: Pin
    paymentMethod: PaymentMethod
    amountPaid: float = Field(ge=0.01, le=999999.99)
    durationMonths: int = Field(ge=1, le=24)
    additionalMembers: List[str] = Field(default_factory=list)


@router.post("/process")
def process_renewal(
    data: RenewalIn,
    request: Request,
    principal: Principal = Depends(require_permission(RENEWALS_PROCESS)),
    store: RowStore = Depends(get_store),
):
    member_id = require_uuid(data.memberId, "memberId")
    package_id = require_uuid(data.packageId, "packageId")
    staff = authorize_staff_pin(store, require_uuid(data.staffId, "staffId"), data.staffPin)

    member = store.select_one("members", filters={"id": member_id})
    if not member:
        raise HTTPException(status_code=404, detail="member not found")
    assert_branch_access(principal, member["branch_id"])
    if str(staff.get("branch_id")) != str(member["branch_id"]):
        raise HTTPException(status_code=403, detail="staff member does not belong to the member's branch")
    package = store.select_one("packages", filters={"id": package_id})
    if not package:
        raise HTTPException(status_code=404, detail="package not found")

    previous_expiry = as_date(member.get("expiry_date"))
    base = max(previous_expiry, today()) if previous_expiry else today()
    new_expiry = add_months(base, data.durationMonths)
    if previous_expiry and not new_expiry > previous_expiry:
        raise HTTPException(status_code=400, detail="new expiry must be after the current expiry")

    now = datetime.now(timezone.utc)
    renewal_data = {
        "member_id": member_id,
        "package_id": package_id,
        "renewed_by_staff_id": str(staff["id"]),
        "payment_method": data.paymentMethod,
        "amount_paid": data.amountPaid,
        "previous_expiry": previous_expiry,
        "new_expiry": new_expiry,
    }
    member_update = {"expiry_date": new_expiry, "status": "active", "updated_at": now}
    action_log = {
        "staff_id": str(staff["id"]),
        "action_type": "MEMBER_RENEWAL",
        "description": (
            f"Renewed membership for {member.get('first_name')} {member.get('last_name')}"
            f" - {package.get('name')} for {data.durationMonths} months"
        ),
        "member_id": member_id,
        "created_at": now,
    }

    result = execute_transaction(store, renewal_operations(renewal_data, member_update, action_log))
    if not result.success:
        json_log("error", "renewal.failed", member_id=member_id, error=result.error, failed_step=result.failed_step)
        raise transaction_failed(result, "Failed to process renewal")

    renewal = result.data[0][0]
    body = success(
        {
            "renewal": renewal,
            "member": {**member, "expiry_date": new_expiry, "status": "active"},
            "package": package,
            "staff": public_staff(staff),
        },
        message="Member renewal processed successfully",
    )
    record_audit_event(
        store,
        principal=principal,
        action="PROCESS_MEMBER_RENEWAL",
        resource_type="renewals",
        request=request,
        body={**data.model_dump(), "branchId": str(member["branch_id"])},
        response=body,
        resource_id=renewal.get("id"),
        branch_id=member["branch_id"],
    )
    return body


@router.get("/member/{member_id}")
def list_member_renewals(
    member_id: str,
    principal: Principal = Depends(require_permission(RENEWALS_READ)),
    store: RowStore = Depends(get_store),
):
    member = store.select_one("members", "id, branch_id", filters={"id": require_uuid(member_id, "member_id")})
    if not member:
        raise HTTPException(status_code=404, detail="member not found")
    assert_branch_access(principal, member["branch_id"])
    rows = store.select(
        "member_renewals",
        filters={"member_id": member["id"]},
        embed={k: v for k, v in RENEWAL_EMBED.items() if k != "members"},
        order_by="created_at",
        descending=True,
    )
    return success(rows)


@router.get("/branch/{branch_id}")
def list_branch_renewals(
    branch_id: str,
    limit: int = 50,
    offset: int = 0,
    principal: Principal = Depends(require_branch_access(RENEWALS_READ)),
    store: RowStore = Depends(get_store),
):
    limit = min(limit or 50, 100)
    offset = max(offset or 0, 0)
    members = store.select("members", "id", filters={"branch_id": require_uuid(branch_id, "branch_id")})
    rows = store.select(
        "member_renewals",
        filters={"member_id__in": [m["id"] for m in members]},
        embed=RENEWAL_EMBED,
        order_by="created_at",
        descending=True,
        limit=limit,
        offset=offset,
    )
    return success(rows, pagination={"limit": limit, "offset": offset, "count": len(rows)})


@router.get("/eligibility/{member_id}")
def renewal_eligibility(
    member_id: str,
    principal: Principal = Depends(require_permission(RENEWALS_READ)),
    store: RowStore = Depends(get_store),
):
    member = store.select_one(
        "members", "id, branch_id, status, expiry_date", filters={"id": require_uuid(member_id, "member_id")}
    )
    if not member:
        raise HTTPException(status_code=404, detail="member not found")
    assert_branch_access(principal, member["branch_id"])

    expiry = as_date(member.get("expiry_date"))
    days_left = (expiry - today()).days if expiry else None
    is_expired = days_left is not None and days_left < 0
    status = member.get("status")
    eligible = status != "suspended"
    if not eligible:
        message = "Membership is suspended and cannot be renewed"
    elif days_left is None:
        message = "Membership has no expiry date on record"
    elif is_expired:
        message = f"Membership expired {-days_left} days ago"
    else:
        message = f"Membership expires in {days_left} days"
    return success(
        {
            "isEligible": eligible,
            "memberStatus": status,
            "expiryDate": expiry.isoformat() if expiry else None,
            "daysUntilExpiry": days_left,
            "isExpired": is_expired,
            "message": message,
        }
    )


@router.get("/{renewal_id}")
def get_renewal(
    renewal_id: str,
    principal: Principal = Depends(require_permission(RENEWALS_READ)),
    store: RowStore = Depends(get_store),
):
    row = store.select_one(
        "member_renewals", filters={"id": require_uuid(renewal_id, "renewal_id")}, embed=RENEWAL_EMBED
    )
    if not row:
        raise HTTPException(status_code=404, detail="renewal not found")
    branch_id = (row.get("members") or {}).get("branch_id")
    if branch_id:
        assert_branch_access(principal, branch_id)
    return success(row)
