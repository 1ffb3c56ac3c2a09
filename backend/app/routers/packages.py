from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import List, Literal, Optional
from ..audit import record_audit_event
from ..deps import Principal, assert_branch_access, assert_permission, get_principal, get_store, require_branch_access, require_permission
from ..rbac import PACKAGES_DELETE, PACKAGES_PRICING, PACKAGES_READ, PACKAGES_WRITE
from ..responses import require_uuid, success
from ..store import RowStore
from ..validation import PackageType

router = APIRouter(prefix="/packages", tags=["packages"])

BASE_COLUMNS = "id, name, type, duration_months, duration_type, duration_value, max_members, features, is_active, branch_id"
PRICED_COLUMNS = BASE_COLUMNS + ", price, created_at, updated_at"


class PackageIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    type: PackageType
    price: float = Field(ge=0, le=999999.99)
    duration_months: int = Field(ge=1, le=24)
    duration_type: Literal["days", "weeks", "months", "years"] = "months"
    duration_value: int = Field(default=1, ge=1)
    max_members: int = Field(default=1, ge=1, le=20)
    features: List[str] = Field(default_factory=lambda: ["Gym Access"])
    is_active: bool = True
    branch_id: str


class PackageUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[PackageType] = None
    price: Optional[float] = Field(default=None, ge=0, le=999999.99)
    duration_months: Optional[int] = Field(default=None, ge=1, le=24)
    duration_type: Optional[Literal["days", "weeks", "months", "years"]] = None
    duration_value: Optional[int] = Field(default=None, ge=1)
    max_members: Optional[int] = Field(default=None, ge=1, le=20)
    features: Optional[List[str]] = None
    is_active: Optional[bool] = None


def _columns_for(principal: Principal) -> str:
    return PRICED_COLUMNS if principal.can(PACKAGES_PRICING) else BASE_COLUMNS


def _permission_flags(principal: Principal) -> dict:
    return {
        "canRead": principal.can(PACKAGES_READ),
        "canEdit": principal.can(PACKAGES_WRITE),
        "canDelete": principal.can(PACKAGES_DELETE),
        "canViewPricing": principal.can(PACKAGES_PRICING),
    }


def _load_package(store: RowStore, package_id: str, columns: str = "*") -> dict:
    row = store.select_one("packages", columns, filters={"id": require_uuid(package_id, "package_id")})
    if not row:
        raise HTTPException(status_code=404, detail="package not found")
    return row


@router.get("/branch/{branch_id}")
def list_branch_packages(
    branch_id: str,
    principal: Principal = Depends(require_branch_access(PACKAGES_READ)),
    store: RowStore = Depends(get_store),
):
    rows = store.select(
        "packages",
        _columns_for(principal),
        filters={"branch_id": require_uuid(branch_id, "branch_id"), "is_active": True},
        order_by="price",
    )
    return success(rows, permissions=_permission_flags(principal))


@router.get("/branch/{branch_id}/active")
def list_active_packages(branch_id: str, store: RowStore = Depends(get_store)):
    # Public: sign-up screens show the current price list.
    rows = store.select(
        "packages",
        BASE_COLUMNS + ", price",
        filters={"branch_id": require_uuid(branch_id, "branch_id"), "is_active": True},
        order_by="price",
    )
    return success(rows)


@router.get("/permissions")
def package_permissions(principal: Principal = Depends(get_principal)):
    return success(_permission_flags(principal))


@router.get("")
def list_packages(
    include_inactive: bool = False,
    principal: Principal = Depends(require_permission(PACKAGES_READ)),
    store: RowStore = Depends(get_store),
):
    filters = {} if include_inactive else {"is_active": True}
    if not principal.is_admin and principal.branch_id:
        filters["branch_id"] = principal.branch_id
    rows = store.select(
        "packages",
        _columns_for(principal),
        filters=filters,
        embed={"branches": ("branch_id", "name")},
        order_by="created_at",
        descending=True,
    )
    return success(rows, permissions=_permission_flags(principal))


@router.get("/{package_id}")
def get_package(
    package_id: str,
    principal: Principal = Depends(require_permission(PACKAGES_READ)),
    store: RowStore = Depends(get_store),
):
    row = _load_package(store, package_id, _columns_for(principal))
    if row.get("branch_id"):
        assert_branch_access(principal, row["branch_id"])
    return success(row)


@router.post("", status_code=201)
def create_package(
    data: PackageIn,
    request: Request,
    principal: Principal = Depends(require_permission(PACKAGES_WRITE)),
    store: RowStore = Depends(get_store),
):
    assert_permission(principal, PACKAGES_PRICING)
    branch_id = require_uuid(data.branch_id, "branch_id")
    assert_branch_access(principal, branch_id)
    name = data.name.strip()
    if store.select_one("packages", "id", filters={"name": name}):
        raise HTTPException(status_code=409, detail="a package with this name already exists")

    now = datetime.now(timezone.utc)
    payload = {**data.model_dump(), "name": name, "branch_id": branch_id, "created_at": now, "updated_at": now}
    rows = store.insert("packages", payload)
    body = success(rows[0], message="Package created successfully")
    record_audit_event(
        store,
        principal=principal,
        action="CREATE_PACKAGE",
        resource_type="package",
        request=request,
        body=data.model_dump(),
        response=body,
        resource_id=rows[0]["id"],
        branch_id=branch_id,
        status_code=201,
    )
    return body


@router.put("/{package_id}")
def update_package(
    package_id: str,
    data: PackageUpdate,
    request: Request,
    principal: Principal = Depends(require_permission(PACKAGES_WRITE)),
    store: RowStore = Depends(get_store),
):
    patch = data.model_dump(exclude_none=True)
    if "price" in patch:
        assert_permission(principal, PACKAGES_PRICING)
    current = _load_package(store, package_id, "id, name, branch_id")
    if current.get("branch_id"):
        assert_branch_access(principal, current["branch_id"])
    if not patch:
        raise HTTPException(status_code=400, detail="no fields to update")
    if "name" in patch:
        patch["name"] = patch["name"].strip()
        dup = store.select_one("packages", "id", filters={"name": patch["name"]})
        if dup and str(dup["id"]) != str(current["id"]):
            raise HTTPException(status_code=409, detail="a package with this name already exists")
    patch["updated_at"] = datetime.now(timezone.utc)

    rows = store.update("packages", patch, {"id": current["id"]})
    body = success(rows[0] if rows else None, message="Package updated successfully")
    record_audit_event(
        store,
        principal=principal,
        action="UPDATE_PACKAGE",
        resource_type="package",
        request=request,
        body=data.model_dump(exclude_none=True),
        response=body,
        resource_id=current["id"],
        branch_id=current.get("branch_id"),
    )
    return body


@router.delete("/{package_id}")
def delete_package(
    package_id: str,
    request: Request,
    principal: Principal = Depends(require_permission(PACKAGES_DELETE)),
    store: RowStore = Depends(get_store),
):
    current = _load_package(store, package_id, "id, name, branch_id")
    if current.get("branch_id"):
        assert_branch_access(principal, current["branch_id"])

    active = store.select("members", "id", filters={"package_name": current["name"], "status": "active"})
    if active:
        raise HTTPException(
            status_code=409,
            detail={
                "error": "Cannot delete package with active members",
                "message": f"This package has {len(active)} active members",
            },
        )

    # Soft delete: renewals and audit rows keep pointing at the package.
    store.update(
        "packages", {"is_active": False, "updated_at": datetime.now(timezone.utc)}, {"id": current["id"]}, returning=None
    )
    body = success({"id": current["id"]}, message="Package deleted successfully")
    record_audit_event(
        store,
        principal=principal,
        action="DELETE_PACKAGE",
        resource_type="package",
        request=request,
        response=body,
        resource_id=current["id"],
        branch_id=current.get("branch_id"),
    )
    return body
