import uuid
from typing import Any, Optional

from fastapi import HTTPException


def success(data: Any = None, meta: Optional[dict] = None, **extra) -> dict:
    body = {"status": "success", "data": data}
    if meta is not None:
        body["meta"] = meta
    body.update(extra)
    return body


def transaction_failed(result, error: str) -> HTTPException:
    return HTTPException(
        status_code=500,
        detail={
            "error": error,
            "message": "The operation could not be completed" + ("" if result.rollback_complete else "; some changes could not be undone"),
            "transaction": {
                "failed_step": result.failed_step,
                "rollback_performed": result.rollback_performed,
                "rollback_complete": result.rollback_complete,
            },
        },
    )


def require_uuid(value: str, field: str) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"invalid {field}")
