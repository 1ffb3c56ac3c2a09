from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from datetime import datetime, timedelta, timezone
import secrets
from ..config import settings
from ..deps import Principal, get_principal, get_store
from ..responses import success
from ..security import hash_password, hash_session_token, needs_rehash, verify_password
from ..store import RowStore
from ..validation import Email

router = APIRouter(prefix="/auth", tags=["auth"])

PROFILE_COLUMNS = "id, email, role, first_name, last_name, branch_id, is_active, created_at"


class CredentialsIn(BaseModel):
    email: Email
    password: str


@router.post("/signin")
def signin(data: CredentialsIn, store: RowStore = Depends(get_store)):
    user = store.select_one("users", filters={"email": data.email})
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="invalid credentials")
    if not verify_password(data.password, user.get("hashed_password")):
        raise HTTPException(status_code=401, detail="invalid credentials")

    if needs_rehash(user["hashed_password"]):
        store.update("users", {"hashed_password": hash_password(data.password)}, {"id": user["id"]}, returning=None)

    # Strong random token; only its one-way hash is stored.
    token = secrets.token_urlsafe(32)
    expires = datetime.now(timezone.utc) + timedelta(days=settings.user_session_days)
    store.insert(
        "user_sessions",
        {"user_id": user["id"], "token_hash": hash_session_token(token), "expires_at": expires, "is_active": True},
        returning="id",
    )
    profile = {k: user.get(k) for k in PROFILE_COLUMNS.replace(" ", "").split(",")}
    return success({"token": token, "expires_at": expires.isoformat(), "profile": profile})


@router.post("/signout")
def signout(principal: Principal = Depends(get_principal), store: RowStore = Depends(get_store)):
    table = "staff_sessions" if principal.session_type == "branch_staff" else "user_sessions"
    store.update(table, {"is_active": False}, {"id": principal.session_id}, returning=None)
    return success(None, message="signed out")


@router.get("/profile")
def profile(principal: Principal = Depends(get_principal), store: RowStore = Depends(get_store)):
    if principal.session_type == "branch_staff":
        row = store.select_one(
            "branch_staff",
            "id, first_name, last_name, email, phone, role, branch_id, last_active",
            filters={"id": principal.id},
        )
    else:
        row = store.select_one("users", PROFILE_COLUMNS, filters={"id": principal.id})
    if not row:
        raise HTTPException(status_code=404, detail="profile not found")
    return success(
        {
            "profile": row,
            "session_type": principal.session_type,
            "role": principal.role,
            "branch_id": principal.branch_id,
            "permissions": sorted(principal.permissions),
        }
    )
