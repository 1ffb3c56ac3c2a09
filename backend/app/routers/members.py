from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from datetime import datetime, timedelta, timezone
from typing import Optional
import time
from ..audit import record_audit_event, record_staff_action
from ..dates import as_date, today
from ..deps import Principal, assert_branch_access, get_store, require_branch_access, require_permission
from ..logs import json_log
from ..rbac import MEMBERS_DELETE, MEMBERS_READ, MEMBERS_SEARCH, MEMBERS_WRITE
from ..responses import require_uuid, success, transaction_failed
from ..store import RowStore
from ..transactions import execute_transaction, member_creation_operations
from ..validation import Email, MemberStatus, PaymentMethod, PersonName, Phone

router = APIRouter(prefix="/members", tags=["members"])

CREATED_COLUMNS = "id, first_name, last_name, email, status, branch_id, package_name, package_type, package_price, start_date, expiry_date"
SEARCH_COLUMNS = ("first_name", "last_name", "email", "phone")


class MemberIn(BaseModel):
    firstName: PersonName
    lastName: PersonName
    email: Email
    phone: Optional[Phone] = None
    branchId: str
    packageId: str
    nationalId: Optional[str] = Field(default=None, max_length=50)
    emergencyContact: Optional[str] = Field(default=None, max_length=100)
    dateOfBirth: Optional[str] = None
    address: Optional[str] = Field(default=None, max_length=255)
    staffId: Optional[str] = None
    paymentMethod: Optional[PaymentMethod] = None
    customPrice: Optional[float] = Field(default=None, gt=0, le=999999.99)


class MemberUpdate(BaseModel):
    firstName: Optional[PersonName] = None
    lastName: Optional[PersonName] = None
    email: Optional[Email] = None
    phone: Optional[Phone] = None
    status: Optional[MemberStatus] = None
    emergencyContact: Optional[str] = Field(default=None, max_length=100)
    address: Optional[str] = Field(default=None, max_length=255)
    dateOfBirth: Optional[str] = None


class CheckInIn(BaseModel):
    staffId: Optional[str] = None


_UPDATE_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "email": "email",
    "phone": "phone",
    "status": "status",
    "emergencyContact": "emergency_contact",
    "address": "address",
    "dateOfBirth": "date_of_birth",
}


def _load_member(store: RowStore, member_id: str, columns: str = "*") -> dict:
    row = store.select_one("members", columns, filters={"id": require_uuid(member_id, "member_id")})
    if not row:
        raise HTTPException(status_code=404, detail="member not found")
    return row


def _acting_staff_id(store: RowStore, principal: Principal, staff_id: Optional[str], branch_id) -> Optional[str]:
    """An explicit staffId counts only for an active staff member of the same branch."""
    if staff_id:
        row = store.select_one(
            "branch_staff", "id, branch_id, is_active", filters={"id": require_uuid(staff_id, "staffId")}
        )
        if row and row.get("is_active") is not False and str(row.get("branch_id")) == str(branch_id):
            return str(row["id"])
        json_log("warning", "member.staff_id_ignored", staff_id=staff_id, branch_id=str(branch_id))
    if principal.session_type == "branch_staff":
        return principal.id
    return None


@router.get("/branch/{branch_id}")
def list_branch_members(
    branch_id: str,
    limit: int = 100,
    offset: int = 0,
    principal: Principal = Depends(require_branch_access(MEMBERS_READ)),
    store: RowStore = Depends(get_store),
):
    limit = min(limit or 100, 1000)
    offset = max(offset or 0, 0)
    rows = store.select(
        "members",
        filters={"branch_id": require_uuid(branch_id, "branch_id")},
        order_by="created_at",
        descending=True,
        limit=limit,
        offset=offset,
    )
    return success(
        rows,
        pagination={"limit": limit, "offset": offset, "count": len(rows)},
        permissions={
            "canEdit": principal.can(MEMBERS_WRITE),
            "canDelete": principal.can(MEMBERS_DELETE),
            "canViewContact": principal.can(MEMBERS_READ),
        },
    )


@router.get("/search/{branch_id}")
def search_members(
    branch_id: str,
    q: str,
    limit: int = 20,
    principal: Principal = Depends(require_branch_access(MEMBERS_SEARCH)),
    store: RowStore = Depends(get_store),
):
    term = (q or "").strip()
    if not term:
        raise HTTPException(status_code=400, detail="search term is required")
    rows = store.select(
        "members",
        "id, first_name, last_name, email, phone, status, expiry_date, package_name",
        filters={"branch_id": require_uuid(branch_id, "branch_id")},
        search=(SEARCH_COLUMNS, term),
        order_by="last_name",
        limit=min(limit or 20, 100),
    )
    return success(rows, meta={"query": term, "count": len(rows)})


@router.post("", status_code=201)
def create_member(
    data: MemberIn,
    request: Request,
    principal: Principal = Depends(require_permission(MEMBERS_WRITE)),
    store: RowStore = Depends(get_store),
):
    branch_id = require_uuid(data.branchId, "branchId")
    package_id = require_uuid(data.packageId, "packageId")
    assert_branch_access(principal, branch_id)

    branch = store.select_one("branches", "id, name", filters={"id": branch_id})
    if not branch:
        raise HTTPException(status_code=404, detail="branch not found")
    package = store.select_one(
        "packages", "id, name, type, price, duration_months, is_active", filters={"id": package_id}
    )
    if not package:
        raise HTTPException(status_code=404, detail="package not found")
    if not package.get("is_active"):
        raise HTTPException(status_code=400, detail="the selected package is not currently available")
    if store.select_one("members", "id", filters={"email": data.email, "branch_id": branch_id}):
        raise HTTPException(status_code=409, detail="a member with this email already exists in this branch")

    start = today()
    now = datetime.now(timezone.utc)
    member_data = {
        "first_name": data.firstName,
        "last_name": data.lastName,
        "email": data.email,
        "phone": data.phone,
        "branch_id": branch_id,
        "national_id": data.nationalId or f"temp-{int(time.time() * 1000)}",
        "emergency_contact": data.emergencyContact,
        "date_of_birth": data.dateOfBirth,
        "address": data.address,
        "status": "active",
        "package_id": package_id,
        "package_type": package.get("type") or "individual",
        "package_name": package["name"],
        "package_price": data.customPrice if data.customPrice is not None else package.get("price"),
        "start_date": start,
        "expiry_date": start + timedelta(days=(package.get("duration_months") or 1) * 30),
        "is_verified": False,
        "created_at": now,
        "updated_at": now,
    }

    staff_id = _acting_staff_id(store, principal, data.staffId, branch_id)
    action_log = None
    if staff_id:
        action_log = {
            "staff_id": staff_id,
            "action_type": "MEMBER_CREATED",
            "description": f"Created member {data.firstName} {data.lastName} - {package['name']}",
            "created_at": now,
        }

    result = execute_transaction(store, member_creation_operations(member_data, action_log))
    if not result.success:
        json_log("error", "member.create_failed", branch_id=branch_id, error=result.error)
        raise transaction_failed(result, "Failed to create member")

    created = result.data[0][0]
    member = {k: created.get(k) for k in CREATED_COLUMNS.replace(" ", "").split(",")}
    body = success(member, message="Member created successfully")
    audit_body = data.model_dump()
    audit_body["staffId"] = staff_id
    if audit_body.get("customPrice") is None:
        audit_body["package_price"] = member["package_price"]
    audit_body["duration_months"] = package.get("duration_months")
    record_audit_event(
        store,
        principal=principal,
        action="CREATE_MEMBER",
        resource_type="member",
        request=request,
        body=audit_body,
        response=body,
        resource_id=member["id"],
        branch_id=branch_id,
        status_code=201,
    )
    return body


@router.get("/{member_id}")
def get_member(
    member_id: str,
    principal: Principal = Depends(require_permission(MEMBERS_READ)),
    store: RowStore = Depends(get_store),
):
    member = _load_member(store, member_id)
    assert_branch_access(principal, member["branch_id"])
    return success(member)


@router.put("/{member_id}")
def update_member(
    member_id: str,
    data: MemberUpdate,
    request: Request,
    principal: Principal = Depends(require_permission(MEMBERS_WRITE)),
    store: RowStore = Depends(get_store),
):
    current = _load_member(store, member_id, "id, branch_id, email, first_name, last_name")
    assert_branch_access(principal, current["branch_id"])

    payload = data.model_dump(exclude_none=True)
    patch = {_UPDATE_FIELDS[k]: v for k, v in payload.items()}
    if "email" in patch and patch["email"] != current.get("email"):
        dup = store.select_one("members", "id", filters={"email": patch["email"], "branch_id": current["branch_id"]})
        if dup and str(dup["id"]) != str(current["id"]):
            raise HTTPException(status_code=409, detail="a member with this email already exists in this branch")
    if not patch:
        raise HTTPException(status_code=400, detail="no fields to update")
    patch["updated_at"] = datetime.now(timezone.utc)

    rows = store.update(
        "members", patch, {"id": current["id"]}, returning="id, first_name, last_name, email, status, updated_at"
    )
    body = success(rows[0] if rows else None, message="Member updated successfully")
    record_audit_event(
        store,
        principal=principal,
        action="UPDATE_MEMBER",
        resource_type="member",
        request=request,
        body=payload,
        response=body,
        resource_id=current["id"],
        branch_id=current["branch_id"],
    )
    return body


@router.delete("/{member_id}")
def delete_member(
    member_id: str,
    request: Request,
    principal: Principal = Depends(require_permission(MEMBERS_DELETE)),
    store: RowStore = Depends(get_store),
):
    current = _load_member(store, member_id, "id, branch_id, email, first_name, last_name")
    assert_branch_access(principal, current["branch_id"])
    store.delete("members", {"id": current["id"]}, returning=None)
    body = success({"id": current["id"]}, message="Member deleted successfully")
    record_audit_event(
        store,
        principal=principal,
        action="DELETE_MEMBER",
        resource_type="member",
        request=request,
        response=body,
        resource_id=current["id"],
        branch_id=current["branch_id"],
    )
    return body


@router.post("/{member_id}/check-in", status_code=201)
def check_in_member(
    member_id: str,
    request: Request,
    data: Optional[CheckInIn] = None,
    principal: Principal = Depends(require_permission(MEMBERS_READ)),
    store: RowStore = Depends(get_store),
):
    member = _load_member(store, member_id, "id, branch_id, first_name, last_name, status, expiry_date")
    assert_branch_access(principal, member["branch_id"])

    day = today()
    expiry = as_date(member.get("expiry_date"))
    if member.get("status") != "active":
        raise HTTPException(status_code=400, detail="membership is not active")
    if expiry is None or expiry < day:
        raise HTTPException(status_code=400, detail="membership has expired")
    if store.select_one("member_check_ins", "id", filters={"member_id": member["id"], "check_in_date": day}):
        raise HTTPException(status_code=409, detail="member has already checked in today")

    now = datetime.now(timezone.utc)
    rows = store.insert(
        "member_check_ins",
        {"member_id": member["id"], "branch_id": member["branch_id"], "check_in_date": day, "check_in_time": now},
    )
    staff_id = _acting_staff_id(store, principal, data.staffId if data else None, member["branch_id"])
    record_staff_action(
        store,
        staff_id=staff_id,
        action_type="MEMBER_CHECK_IN",
        description=f"Checked in {member.get('first_name')} {member.get('last_name')}",
        member_id=member["id"],
    )
    body = success(rows[0] if rows else None, message="Check-in recorded")
    record_audit_event(
        store,
        principal=principal,
        action="MEMBER_CHECK_IN",
        resource_type="member",
        request=request,
        response=body,
        resource_id=member["id"],
        branch_id=member["branch_id"],
        status_code=201,
    )
    return body
