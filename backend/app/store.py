"""
Generic row-store client.

Every handler talks to the database through this thin table gateway: filtered
select/insert/update/delete plus a single RPC entry point for stored
procedures. Each call borrows one pooled connection and commits on its own, so
a sequence of calls is never atomic (see `transactions.py`).
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from psycopg import sql
from psycopg.types.json import Jsonb

from .db import get_conn


_OPERATORS = {
    "eq": "=",
    "ne": "<>",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "not_like": "NOT LIKE",
    "like": "LIKE",
    "ilike": "ILIKE",
}

Embed = Mapping[str, Tuple[str, str]]


class StoreError(Exception):
    """Raised for malformed row-store calls (never for database errors, which propagate as-is)."""


def _split_key(key: str) -> Tuple[str, str]:
    if "__" in key:
        col, op = key.rsplit("__", 1)
        if op in _OPERATORS or op == "in":
            return col, op
    return key, "eq"


def _columns(columns: Union[str, Sequence[str]], alias: Optional[str] = None) -> sql.Composable:
    if isinstance(columns, str):
        columns = [c.strip() for c in columns.split(",") if c.strip()]
    if not columns or list(columns) == ["*"]:
        return sql.SQL("{}.*").format(sql.Identifier(alias)) if alias else sql.SQL("*")
    if alias:
        return sql.SQL(", ").join(sql.Identifier(alias, c) for c in columns)
    return sql.SQL(", ").join(sql.Identifier(c) for c in columns)


def _adapt(value: Any) -> Any:
    # dict/list payloads go to jsonb columns (audit request/response data, package features).
    if isinstance(value, (dict, list)):
        return Jsonb(value)
    return value


def build_where(filters: Optional[Mapping[str, Any]], alias: Optional[str] = None) -> Tuple[sql.Composable, List[Any]]:
    if not filters:
        return sql.SQL(""), []
    parts: List[sql.Composable] = []
    params: List[Any] = []
    for key, value in filters.items():
        col, op = _split_key(key)
        ident = sql.Identifier(alias, col) if alias else sql.Identifier(col)
        if op == "in":
            values = list(value or [])
            if not values:
                # `IN ()` matches nothing.
                parts.append(sql.SQL("false"))
                continue
            parts.append(sql.SQL("{} = ANY(%s)").format(ident))
            params.append(values)
        elif value is None and op in {"eq", "ne"}:
            parts.append(sql.SQL("{} IS NULL" if op == "eq" else "{} IS NOT NULL").format(ident))
        else:
            parts.append(sql.SQL("{} {} %s").format(ident, sql.SQL(_OPERATORS[op])))
            params.append(value)
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(parts), params


def build_select(
    table: str,
    columns: Union[str, Sequence[str]] = "*",
    *,
    filters: Optional[Mapping[str, Any]] = None,
    embed: Optional[Embed] = None,
    search: Optional[Tuple[Sequence[str], str]] = None,
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> Tuple[sql.Composable, List[Any]]:
    """`search=(columns, term)` adds `(c1 ILIKE %term% OR c2 ILIKE ...)` on top of the filters."""
    alias = "t"
    select_list: List[sql.Composable] = [_columns(columns, alias)]
    for relation, (fk_column, rel_columns) in (embed or {}).items():
        # Embedded relation: the referenced row rendered as a json object under the relation name.
        select_list.append(
            sql.SQL("(SELECT to_jsonb(e) FROM (SELECT {cols} FROM {rel} r WHERE r.id = {fk}) e) AS {name}").format(
                cols=_columns(rel_columns, "r"),
                rel=sql.Identifier(relation),
                fk=sql.Identifier(alias, fk_column),
                name=sql.Identifier(relation),
            )
        )
    query = sql.SQL("SELECT {cols} FROM {table} {alias}").format(
        cols=sql.SQL(", ").join(select_list),
        table=sql.Identifier(table),
        alias=sql.Identifier(alias),
    )
    where, params = build_where(filters, alias)
    query = query + where
    if search and search[0] and search[1]:
        search_cols, term = search
        pattern = "%" + term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        clause = sql.SQL("({})").format(
            sql.SQL(" OR ").join(sql.SQL("{} ILIKE %s").format(sql.Identifier(alias, c)) for c in search_cols)
        )
        query = query + (sql.SQL(" AND ") if params or filters else sql.SQL(" WHERE ")) + clause
        params.extend(pattern for _ in search_cols)
    if order_by:
        query = query + sql.SQL(" ORDER BY {} {}").format(
            sql.Identifier(alias, order_by), sql.SQL("DESC" if descending else "ASC")
        )
    if limit is not None:
        query = query + sql.SQL(" LIMIT %s")
        params.append(int(limit))
    if offset:
        query = query + sql.SQL(" OFFSET %s")
        params.append(int(offset))
    return query, params


def _returning(returning: Optional[str]) -> sql.Composable:
    if not returning:
        return sql.SQL("")
    return sql.SQL(" RETURNING ") + _columns(returning)


def build_insert(table: str, rows: Sequence[Mapping[str, Any]], returning: Optional[str] = "*") -> Tuple[sql.Composable, List[Any]]:
    if not rows:
        raise StoreError(f"insert into {table} requires at least one row")
    cols: List[str] = []
    for row in rows:
        for k in row.keys():
            if k not in cols:
                cols.append(k)
    params: List[Any] = []
    values: List[sql.Composable] = []
    for row in rows:
        values.append(sql.SQL("({})").format(sql.SQL(", ").join(sql.Placeholder() for _ in cols)))
        params.extend(_adapt(row.get(c)) for c in cols)
    query = sql.SQL("INSERT INTO {table} ({cols}) VALUES {values}").format(
        table=sql.Identifier(table),
        cols=sql.SQL(", ").join(sql.Identifier(c) for c in cols),
        values=sql.SQL(", ").join(values),
    )
    return query + _returning(returning), params


def build_update(
    table: str, data: Mapping[str, Any], filters: Mapping[str, Any], returning: Optional[str] = "*"
) -> Tuple[sql.Composable, List[Any]]:
    if not data:
        raise StoreError(f"update on {table} requires data")
    if not filters:
        raise StoreError(f"update on {table} requires conditions")
    assignments = sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(k)) for k in data.keys())
    params: List[Any] = [_adapt(v) for v in data.values()]
    where, where_params = build_where(filters)
    query = sql.SQL("UPDATE {table} SET {assignments}").format(table=sql.Identifier(table), assignments=assignments)
    return query + where + _returning(returning), params + where_params


def build_delete(table: str, filters: Mapping[str, Any], returning: Optional[str] = "*") -> Tuple[sql.Composable, List[Any]]:
    if not filters:
        raise StoreError(f"delete on {table} requires conditions")
    where, params = build_where(filters)
    query = sql.SQL("DELETE FROM {table}").format(table=sql.Identifier(table))
    return query + where + _returning(returning), params


def build_rpc(function: str, params: Mapping[str, Any]) -> Tuple[sql.Composable, List[Any]]:
    args = sql.SQL(", ").join(sql.SQL("{} => %s").format(sql.Identifier(k)) for k in params.keys())
    query = sql.SQL("SELECT * FROM {fn}({args})").format(fn=sql.Identifier(function), args=args)
    return query, [_adapt(v) for v in params.values()]


class RowStore:
    def __init__(self, conn_factory: Callable = get_conn):
        self._conn_factory = conn_factory

    def _fetch(self, query: sql.Composable, params: Iterable[Any], fetch: bool = True) -> List[Dict[str, Any]]:
        with self._conn_factory() as conn:
            with conn.cursor() as cur:
                cur.execute(query, list(params))
                if not fetch or cur.description is None:
                    return []
                return list(cur.fetchall())

    def select(self, table: str, columns: Union[str, Sequence[str]] = "*", **kwargs) -> List[Dict[str, Any]]:
        query, params = build_select(table, columns, **kwargs)
        return self._fetch(query, params)

    def select_one(self, table: str, columns: Union[str, Sequence[str]] = "*", **kwargs) -> Optional[Dict[str, Any]]:
        kwargs["limit"] = 1
        rows = self.select(table, columns, **kwargs)
        return rows[0] if rows else None

    def insert(self, table: str, data, returning: Optional[str] = "*") -> List[Dict[str, Any]]:
        rows = data if isinstance(data, list) else [data]
        query, params = build_insert(table, rows, returning)
        return self._fetch(query, params, fetch=bool(returning))

    def update(self, table: str, data: Mapping[str, Any], filters: Mapping[str, Any], returning: Optional[str] = "*") -> List[Dict[str, Any]]:
        query, params = build_update(table, data, filters, returning)
        return self._fetch(query, params, fetch=bool(returning))

    def delete(self, table: str, filters: Mapping[str, Any], returning: Optional[str] = "*") -> List[Dict[str, Any]]:
        query, params = build_delete(table, filters, returning)
        return self._fetch(query, params, fetch=bool(returning))

    def rpc(self, function: str, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        query, args = build_rpc(function, params)
        return self._fetch(query, args)
