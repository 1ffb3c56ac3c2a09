import os
import sys


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

import copy
import re
import uuid
from collections import defaultdict
from datetime import date, datetime, timezone

import pytest

from backend.app.store import StoreError, _split_key


def _norm(v):
    if isinstance(v, uuid.UUID):
        return str(v)
    return v


def _comparable(a, b):
    a, b = _norm(a), _norm(b)
    if isinstance(a, datetime) and isinstance(b, str):
        b = datetime.fromisoformat(b.replace("Z", "+00:00"))
    elif isinstance(a, str) and isinstance(b, datetime):
        a = datetime.fromisoformat(a.replace("Z", "+00:00"))
    elif isinstance(a, date) and isinstance(b, str):
        b = date.fromisoformat(b[:10])
    return a, b


def _like(value, pattern, flags=0) -> bool:
    regex = "^" + ".*".join(re.escape(part) for part in pattern.split("%")) + "$"
    return re.match(regex, str(value or ""), flags) is not None


def _matches(row: dict, filters) -> bool:
    for key, expected in (filters or {}).items():
        col, op = _split_key(key)
        actual = row.get(col)
        if op == "in":
            if _norm(actual) not in {_norm(v) for v in (expected or [])}:
                return False
        elif op in ("eq", "ne") and expected is None:
            if (actual is None) != (op == "eq"):
                return False
        elif op in ("like", "not_like", "ilike"):
            hit = _like(actual, expected, re.IGNORECASE if op == "ilike" else 0)
            if hit == (op == "not_like"):
                return False
        else:
            if actual is None:
                return False
            a, b = _comparable(actual, expected)
            ok = {
                "eq": a == b,
                "ne": a != b,
                "gt": a > b,
                "gte": a >= b,
                "lt": a < b,
                "lte": a <= b,
            }[op]
            if not ok:
                return False
    return True


def _project(row: dict, columns) -> dict:
    if not columns or columns == "*":
        return copy.deepcopy(row)
    if isinstance(columns, str):
        columns = [c.strip() for c in columns.split(",") if c.strip()]
    return {c: copy.deepcopy(row.get(c)) for c in columns}


class FakeStore:
    """In-memory stand-in for `RowStore` with the same filter vocabulary."""

    def __init__(self):
        self.tables = defaultdict(list)
        self.failures = {}
        self.rpc_handlers = {}
        self.calls = []

    def seed(self, table, **row):
        row.setdefault("id", str(uuid.uuid4()))
        self.tables[table].append(row)
        return row

    def fail(self, action, table, exc=None):
        self.failures[(action, table)] = exc or RuntimeError(f"{action} on {table} failed")

    def _check(self, action, table):
        self.calls.append((action, table))
        exc = self.failures.get((action, table))
        if exc is not None:
            raise exc

    def select(self, table, columns="*", *, filters=None, embed=None, search=None, order_by=None,
               descending=False, limit=None, offset=None):
        self._check("select", table)
        rows = [r for r in self.tables[table] if _matches(r, filters)]
        if search and search[0] and search[1]:
            cols, term = search
            rows = [r for r in rows if any(term.lower() in str(r.get(c) or "").lower() for c in cols)]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
        if offset:
            rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        out = []
        for r in rows:
            item = _project(r, columns)
            for relation, (fk, rel_columns) in (embed or {}).items():
                target = next((t for t in self.tables[relation] if _norm(t.get("id")) == _norm(r.get(fk))), None)
                item[relation] = _project(target, rel_columns) if target else None
            out.append(item)
        return out

    def select_one(self, table, columns="*", **kwargs):
        kwargs["limit"] = 1
        rows = self.select(table, columns, **kwargs)
        return rows[0] if rows else None

    def insert(self, table, data, returning="*"):
        self._check("insert", table)
        out = []
        for row in (data if isinstance(data, list) else [data]):
            row = dict(row)
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", datetime.now(timezone.utc))
            self.tables[table].append(row)
            if returning:
                out.append(_project(row, returning))
        return out

    def update(self, table, data, filters, returning="*"):
        if not data or not filters:
            raise StoreError(f"update on {table} requires data and conditions")
        self._check("update", table)
        out = []
        for row in self.tables[table]:
            if _matches(row, filters):
                row.update(data)
                if returning:
                    out.append(_project(row, returning))
        return out

    def delete(self, table, filters, returning="*"):
        if not filters:
            raise StoreError(f"delete on {table} requires conditions")
        self._check("delete", table)
        keep, out = [], []
        for row in self.tables[table]:
            if _matches(row, filters):
                if returning:
                    out.append(_project(row, returning))
            else:
                keep.append(row)
        self.tables[table] = keep
        return out

    def rpc(self, function, params):
        self._check("rpc", function)
        handler = self.rpc_handlers.get(function)
        if handler is None:
            raise StoreError(f"function {function} does not exist")
        return handler(**params)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture(autouse=True)
def _fresh_pin_tracker():
    from backend.app.security import pin_attempt_tracker

    with pin_attempt_tracker._lock:
        pin_attempt_tracker._attempts.clear()
    yield
    with pin_attempt_tracker._lock:
        pin_attempt_tracker._attempts.clear()


@pytest.fixture
def admin():
    from backend.app.deps import Principal
    from backend.app.rbac import permissions_for

    return Principal(
        id=str(uuid.uuid4()),
        email="owner@fitgym.test",
        role="admin",
        session_type="user",
        permissions=permissions_for("admin"),
    )


@pytest.fixture
def client(store):
    from fastapi.testclient import TestClient

    from backend.app.deps import get_store
    from backend.app.main import app

    app.dependency_overrides[get_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def as_principal():
    from backend.app.deps import get_principal
    from backend.app.main import app

    def _use(principal):
        app.dependency_overrides[get_principal] = lambda: principal
        return principal

    return _use
