from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Optional

from fastapi import Depends, Header, HTTPException, Request

from .rbac import ADMIN_ROLES, BRANCHES_MANAGE_ALL, has_permission, permissions_for
from .security import hash_session_token
from .store import RowStore


SESSION_HEADER = "X-Session-Token"
BRANCH_HEADER = "X-Branch-ID"

_store = RowStore()


def get_store() -> RowStore:
    return _store


@dataclass
class Principal:
    """Whoever is calling: a signed-in user or a PIN-verified branch staff member."""

    id: str
    email: Optional[str]
    role: str
    session_type: str
    branch_id: Optional[str] = None
    session_id: Optional[str] = None
    name: Optional[str] = None
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def can(self, code: str) -> bool:
        return has_permission(self.permissions, code)


def _aware(ts) -> Optional[datetime]:
    if ts is None:
        return None
    if isinstance(ts, str):
        ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _session_valid(row: Optional[dict]) -> bool:
    if not row or not row.get("is_active"):
        return False
    expires_at = _aware(row.get("expires_at"))
    return expires_at is not None and expires_at > datetime.now(timezone.utc)


def _staff_principal(store: RowStore, token: str) -> Optional[Principal]:
    row = store.select_one(
        "staff_sessions",
        "id, staff_id, branch_id, role, expires_at, is_active",
        filters={"token_hash": hash_session_token(token)},
        embed={"branch_staff": ("staff_id", "email, first_name, last_name, is_active")},
    )
    if not _session_valid(row):
        return None
    staff = row.get("branch_staff") or {}
    if staff and staff.get("is_active") is False:
        return None
    name = " ".join(p for p in (staff.get("first_name"), staff.get("last_name")) if p) or None
    return Principal(
        id=str(row["staff_id"]),
        email=staff.get("email"),
        role=row["role"],
        session_type="branch_staff",
        branch_id=str(row["branch_id"]),
        session_id=str(row["id"]),
        name=name,
        permissions=permissions_for(row["role"]),
    )


def _user_principal(store: RowStore, token: str) -> Optional[Principal]:
    row = store.select_one(
        "user_sessions",
        "id, user_id, expires_at, is_active",
        filters={"token_hash": hash_session_token(token)},
        embed={"users": ("user_id", "email, role, is_active, branch_id")},
    )
    if not _session_valid(row):
        return None
    user = row.get("users") or {}
    if not user or user.get("is_active") is False:
        return None
    role = (user.get("role") or "member").lower()
    return Principal(
        id=str(row["user_id"]),
        email=user.get("email"),
        role=role,
        session_type="user",
        branch_id=str(user["branch_id"]) if user.get("branch_id") else None,
        session_id=str(row["id"]),
        permissions=permissions_for(role),
    )


def get_principal(
    authorization: Optional[str] = Header(None),
    x_session_token: Optional[str] = Header(None, alias=SESSION_HEADER),
    store: RowStore = Depends(get_store),
) -> Principal:
    # Staff PIN sessions win over bearer tokens when both are sent.
    if x_session_token:
        principal = _staff_principal(store, x_session_token)
        if principal:
            return principal
    if authorization and authorization.lower().startswith("bearer "):
        principal = _user_principal(store, authorization.split(" ", 1)[1].strip())
        if principal:
            return principal
        raise HTTPException(status_code=401, detail="invalid or expired token")
    if x_session_token:
        raise HTTPException(status_code=401, detail="invalid or expired session")
    raise HTTPException(status_code=401, detail="authentication required")


def assert_permission(principal: Principal, code: str) -> None:
    if not principal.can(code):
        raise HTTPException(status_code=403, detail=f"permission denied: {code}")


def assert_branch_access(principal: Principal, branch_id) -> None:
    if principal.can(BRANCHES_MANAGE_ALL):
        return
    if principal.session_type == "branch_staff" and str(principal.branch_id) != str(branch_id):
        raise HTTPException(status_code=403, detail="you can only access your assigned branch")


def require_permission(code: str):
    def _dep(principal: Principal = Depends(get_principal)) -> Principal:
        assert_permission(principal, code)
        return principal
    return _dep


def require_branch_access(code: str):
    def _dep(
        request: Request,
        principal: Principal = Depends(get_principal),
        x_branch_id: Optional[str] = Header(None, alias=BRANCH_HEADER),
    ) -> Principal:
        assert_permission(principal, code)
        branch_id = request.path_params.get("branch_id") or x_branch_id
        if not branch_id:
            raise HTTPException(status_code=400, detail="branch id is required")
        assert_branch_access(principal, branch_id)
        return principal
    return _dep
