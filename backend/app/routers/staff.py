from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from typing import Optional
from ..audit import record_audit_event
from ..deps import Principal, assert_branch_access, assert_permission, get_store, require_permission
from ..logs import json_log
from ..rbac import BRANCHES_MANAGE_ALL, STAFF_DELETE, STAFF_MANAGE_PINS, STAFF_READ, STAFF_WRITE
from ..responses import require_uuid, success
from ..security import hash_pin, pin_attempt_tracker, validate_pin
from ..staff_auth import authorize_staff_pin, open_staff_session, public_staff, touch_last_active
from ..store import RowStore
from ..validation import Email, PersonName, Phone, Pin, StaffRole

router = APIRouter(prefix="/staff", tags=["staff"])

# Never select pin/pin_hash into a response.
PUBLIC_COLUMNS = "id, first_name, last_name, role, email, phone, branch_id, is_active, last_active, created_at"


class VerifyPinIn(BaseModel):
    staffId: str
    pin: Pin


class StaffIn(BaseModel):
    firstName: PersonName
    lastName: PersonName
    email: Email
    phone: Optional[Phone] = None
    role: StaffRole
    pin: Pin
    branchId: str


class StaffUpdate(BaseModel):
    firstName: Optional[PersonName] = None
    lastName: Optional[PersonName] = None
    email: Optional[Email] = None
    phone: Optional[Phone] = None
    role: Optional[StaffRole] = None
    pin: Optional[Pin] = None
    isActive: Optional[bool] = None


def _check_new_pin(pin: str) -> None:
    result = validate_pin(pin)
    if not result["is_valid"]:
        raise HTTPException(status_code=400, detail=result["error"])


def _load_staff(store: RowStore, staff_id: str) -> dict:
    row = store.select_one("branch_staff", PUBLIC_COLUMNS, filters={"id": require_uuid(staff_id, "staff_id")})
    if not row:
        raise HTTPException(status_code=404, detail="staff member not found")
    return row


@router.get("/branch/{branch_id}")
def list_branch_staff(branch_id: str, store: RowStore = Depends(get_store)):
    # Public: the PIN picker lists staff before anyone is signed in.
    rows = store.select(
        "branch_staff",
        "id, first_name, last_name, role, email, phone, last_active",
        filters={"branch_id": require_uuid(branch_id, "branch_id"), "is_active": True},
        order_by="role",
    )
    return success(rows)


@router.post("/verify-pin")
def verify_staff_pin(data: VerifyPinIn, store: RowStore = Depends(get_store)):
    staff = authorize_staff_pin(store, require_uuid(data.staffId, "staffId"), data.pin)
    touch_last_active(store, staff["id"])
    session = open_staff_session(store, staff)
    return success({"isValid": True, "staff": public_staff(staff), **session})


@router.get("")
def list_staff(
    principal: Principal = Depends(require_permission(BRANCHES_MANAGE_ALL)),
    store: RowStore = Depends(get_store),
):
    rows = store.select(
        "branch_staff",
        PUBLIC_COLUMNS,
        embed={"branches": ("branch_id", "name")},
        order_by="created_at",
        descending=True,
    )
    return success(rows)


@router.get("/{staff_id}")
def get_staff(
    staff_id: str,
    principal: Principal = Depends(require_permission(STAFF_READ)),
    store: RowStore = Depends(get_store),
):
    row = _load_staff(store, staff_id)
    assert_branch_access(principal, row["branch_id"])
    return success(row)


@router.post("", status_code=201)
def create_staff(
    data: StaffIn,
    request: Request,
    principal: Principal = Depends(require_permission(STAFF_WRITE)),
    store: RowStore = Depends(get_store),
):
    branch_id = require_uuid(data.branchId, "branchId")
    assert_branch_access(principal, branch_id)
    _check_new_pin(data.pin)

    if not store.select_one("branches", "id", filters={"id": branch_id}):
        raise HTTPException(status_code=404, detail="branch not found")
    if store.select_one("branch_staff", "id", filters={"email": data.email, "branch_id": branch_id}):
        raise HTTPException(status_code=409, detail="a staff member with this email already exists in this branch")

    rows = store.insert(
        "branch_staff",
        {
            "first_name": data.firstName,
            "last_name": data.lastName,
            "email": data.email,
            "phone": data.phone,
            "role": data.role,
            "branch_id": branch_id,
            "pin_hash": hash_pin(data.pin),
            "is_active": True,
        },
        returning=PUBLIC_COLUMNS,
    )
    body = success(rows[0], message="Staff member created successfully")
    record_audit_event(
        store,
        principal=principal,
        action="CREATE_STAFF",
        resource_type="staff",
        request=request,
        body=data.model_dump(),
        response=body,
        resource_id=rows[0]["id"],
        branch_id=branch_id,
        status_code=201,
    )
    return body


@router.put("/{staff_id}")
def update_staff(
    staff_id: str,
    data: StaffUpdate,
    request: Request,
    principal: Principal = Depends(require_permission(STAFF_WRITE)),
    store: RowStore = Depends(get_store),
):
    current = _load_staff(store, staff_id)
    assert_branch_access(principal, current["branch_id"])

    mapping = {"firstName": "first_name", "lastName": "last_name", "email": "email", "phone": "phone", "role": "role", "isActive": "is_active"}
    payload = data.model_dump(exclude_none=True)
    patch = {mapping[k]: v for k, v in payload.items() if k in mapping}

    if "email" in patch and patch["email"] != current.get("email"):
        dup = store.select_one("branch_staff", "id", filters={"email": patch["email"], "branch_id": current["branch_id"]})
        if dup and str(dup["id"]) != str(current["id"]):
            raise HTTPException(status_code=409, detail="a staff member with this email already exists in this branch")

    if data.pin is not None:
        assert_permission(principal, STAFF_MANAGE_PINS)
        _check_new_pin(data.pin)
        patch["pin_hash"] = hash_pin(data.pin)
        patch["pin"] = None

    if not patch:
        return success(current)

    rows = store.update("branch_staff", patch, {"id": current["id"]}, returning=PUBLIC_COLUMNS)
    if data.pin is not None:
        pin_attempt_tracker.reset_attempts(str(current["id"]))
    if "role" in patch and patch["role"] != current.get("role"):
        # Sessions carry the role they were opened with.
        store.update("staff_sessions", {"is_active": False}, {"staff_id": current["id"]}, returning=None)
        json_log("info", "staff.sessions_revoked", staff_id=str(current["id"]), role=patch["role"])
    body = success(rows[0] if rows else current, message="Staff member updated successfully")
    record_audit_event(
        store,
        principal=principal,
        action="UPDATE_STAFF",
        resource_type="staff",
        request=request,
        body=payload,
        response=body,
        resource_id=current["id"],
        branch_id=current["branch_id"],
    )
    return body


@router.delete("/{staff_id}")
def delete_staff(
    staff_id: str,
    request: Request,
    principal: Principal = Depends(require_permission(STAFF_DELETE)),
    store: RowStore = Depends(get_store),
):
    current = _load_staff(store, staff_id)
    assert_branch_access(principal, current["branch_id"])

    if current.get("role") == "manager":
        managers = store.select("branch_staff", "id", filters={"branch_id": current["branch_id"], "role": "manager"})
        if len(managers) <= 1:
            raise HTTPException(status_code=409, detail="cannot remove the last manager of a branch")

    store.update("staff_sessions", {"is_active": False}, {"staff_id": current["id"]}, returning=None)
    store.delete("branch_staff", {"id": current["id"]}, returning=None)
    pin_attempt_tracker.reset_attempts(str(current["id"]))

    body = success({"id": current["id"]}, message="Staff member deleted successfully")
    record_audit_event(
        store,
        principal=principal,
        action="DELETE_STAFF",
        resource_type="staff",
        request=request,
        response=body,
        resource_id=current["id"],
        branch_id=current["branch_id"],
    )
    return body
