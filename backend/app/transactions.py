"""
Best-effort multi-step writes against the row store.

The row store commits every call on its own, so there is no real transaction
here: operations run strictly in order, and when one fails the helper stops and
compensates what it can in reverse order. Completed inserts are undone by
deleting the returned rows by id. Completed updates and deletes are NOT
restored (no before-image is captured); they are logged and reported through
`rollback_complete=False`. Concurrent callers can interleave with a running
sequence.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .logs import json_log

ACTIONS = ("insert", "update", "delete")


@dataclass
class TransactionOperation:
    table: str
    action: str
    data: Any = None
    conditions: Optional[Dict[str, Any]] = None
    returning: Optional[str] = "*"


@dataclass
class TransactionResult:
    success: bool
    data: List[Any] = field(default_factory=list)
    error: Optional[str] = None
    rollback_performed: bool = False
    rollback_complete: bool = True
    failed_step: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "rollback_performed": self.rollback_performed,
            "rollback_complete": self.rollback_complete,
            "failed_step": self.failed_step,
        }


def _run(store, op: TransactionOperation):
    if op.action == "insert":
        return store.insert(op.table, op.data, returning=op.returning or "*")
    if op.action == "update":
        if not op.conditions:
            raise ValueError(f"update operation on {op.table} requires conditions")
        return store.update(op.table, op.data, op.conditions, returning=op.returning)
    if op.action == "delete":
        if not op.conditions:
            raise ValueError(f"delete operation on {op.table} requires conditions")
        return store.delete(op.table, op.conditions, returning=op.returning)
    raise ValueError(f"unsupported operation: {op.action}")


def _compensate(store, completed: List[tuple]) -> bool:
    complete = True
    for index, op, result in reversed(completed):
        if op.action != "insert":
            json_log(
                "warning",
                "txn.rollback.unrestorable",
                step=index + 1,
                action=op.action,
                table=op.table,
                reason="original data not captured",
            )
            complete = False
            continue
        for row in result or []:
            row_id = row.get("id") if isinstance(row, dict) else None
            if row_id is None:
                json_log("warning", "txn.rollback.missing_id", step=index + 1, table=op.table)
                complete = False
                continue
            try:
                store.delete(op.table, {"id": row_id}, returning=None)
                json_log("info", "txn.rollback.deleted", step=index + 1, table=op.table, id=row_id)
            except Exception as exc:
                json_log("error", "txn.rollback.failed", step=index + 1, table=op.table, id=row_id, error=str(exc))
                complete = False
    return complete


def execute_transaction(store, operations: List[TransactionOperation]) -> TransactionResult:
    completed: List[tuple] = []
    results: List[Any] = []
    json_log("info", "txn.start", operations=len(operations))

    for index, op in enumerate(operations):
        try:
            result = _run(store, op)
        except Exception as exc:
            json_log(
                "error",
                "txn.step.failed",
                step=index + 1,
                action=op.action,
                table=op.table,
                error=str(exc),
            )
            if op.action in ("update", "delete"):
                # A failed update/delete may still have touched rows before erroring.
                json_log(
                    "warning",
                    "txn.rollback.unrestorable",
                    step=index + 1,
                    action=op.action,
                    table=op.table,
                    reason="failed step effect cannot be undone",
                )
            rollback_performed = False
            rollback_complete = True
            if completed:
                json_log("info", "txn.rollback.start", completed=len(completed))
                rollback_performed = True
                rollback_complete = _compensate(store, completed)
                json_log("info" if rollback_complete else "warning", "txn.rollback.done", complete=rollback_complete)
            return TransactionResult(
                success=False,
                data=results,
                error=str(exc) or type(exc).__name__,
                rollback_performed=rollback_performed,
                rollback_complete=rollback_complete,
                failed_step=index,
            )
        completed.append((index, op, result))
        results.append(result)
        json_log("info", "txn.step.ok", step=index + 1, action=op.action, table=op.table)

    return TransactionResult(success=True, data=results)


def renewal_operations(renewal_data: dict, member_update: dict, action_log: dict) -> List[TransactionOperation]:
    return [
        TransactionOperation(table="member_renewals", action="insert", data=renewal_data),
        TransactionOperation(
            table="members",
            action="update",
            data=member_update,
            conditions={"id": renewal_data["member_id"]},
        ),
        TransactionOperation(table="staff_actions_log", action="insert", data=action_log),
    ]


def member_creation_operations(member_data: dict, action_log: Optional[dict] = None) -> List[TransactionOperation]:
    ops = [TransactionOperation(table="members", action="insert", data=member_data)]
    if action_log:
        ops.append(TransactionOperation(table="staff_actions_log", action="insert", data=action_log))
    return ops
