from fastapi import APIRouter, Depends, HTTPException
from ..deps import get_store
from ..responses import require_uuid, success
from ..store import RowStore

router = APIRouter(prefix="/branches", tags=["branches"])


@router.get("")
def list_branches(store: RowStore = Depends(get_store)):
    return success(store.select("branches", order_by="name"))


@router.get("/{branch_id}")
def get_branch(branch_id: str, store: RowStore = Depends(get_store)):
    row = store.select_one("branches", filters={"id": require_uuid(branch_id, "branch_id")})
    if not row:
        raise HTTPException(status_code=404, detail="branch not found")
    return success(row)
