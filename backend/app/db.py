from psycopg.rows import dict_row
from contextlib import contextmanager

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import settings


def _pool_kwargs() -> dict:
    kwargs = {"row_factory": dict_row}
    if settings.service_key:
        kwargs["password"] = settings.service_key
    return kwargs


# Pool sizing defaults are conservative for local/dev. Override in prod via env:
# - DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE
# open=False: the pool connects on first use, so importing the app never blocks on the network.
_pool = ConnectionPool(
    conninfo=settings.db_url,
    min_size=settings.pool_min_size,
    max_size=settings.pool_max_size,
    kwargs=_pool_kwargs(),
    open=False,
)


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:` commits on success, rolls back on exception
    # and returns the connection to the pool.
    if pool.closed:
        pool.open()
    with pool.connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn(_pool)


def close_pools() -> None:
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    try:
        _pool.close()
    except Exception:
        pass
