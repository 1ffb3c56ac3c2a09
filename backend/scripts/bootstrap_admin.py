#!/usr/bin/env python3
"""
Create the first admin account so someone can sign in to the API.

Runs only when BOOTSTRAP_ADMIN is truthy (container entrypoints call it on every
start); an existing user with the same email is left untouched.
"""
import argparse
import os
import secrets
import sys
from typing import Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from backend.app.rbac import ADMIN_ROLES
from backend.app.security import hash_password


def _enabled(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the initial admin user (idempotent).")
    parser.add_argument("--db", default=os.getenv("DATABASE_URL"), help="Postgres connection string (defaults to $DATABASE_URL).")
    parser.add_argument("--email", default=os.getenv("BOOTSTRAP_ADMIN_EMAIL", "admin@fitgym.local"))
    parser.add_argument("--password", default=os.getenv("BOOTSTRAP_ADMIN_PASSWORD"), help="Generated and printed when omitted.")
    parser.add_argument("--role", default=os.getenv("BOOTSTRAP_ADMIN_ROLE", "admin"))
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    if not _enabled(os.getenv("BOOTSTRAP_ADMIN")):
        return 0
    args = _parse_args(argv)

    if not args.db:
        print("bootstrap_admin: missing DATABASE_URL", file=sys.stderr)
        return 2
    email = (args.email or "").strip().lower()
    if not email:
        print("bootstrap_admin: email is required", file=sys.stderr)
        return 2
    role = (args.role or "").strip().lower()
    if role not in ADMIN_ROLES:
        print(f"bootstrap_admin: role must be one of {', '.join(sorted(ADMIN_ROLES))}", file=sys.stderr)
        return 2
    password = args.password or secrets.token_urlsafe(16)

    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT id FROM users WHERE email = %s", (email,))
                if cur.fetchone():
                    print(f"bootstrap_admin: {email} already exists")
                    return 0
                cur.execute(
                    """
                    INSERT INTO users (id, email, hashed_password, role, is_active)
                    VALUES (gen_random_uuid(), %s, %s, %s, true)
                    """,
                    (email, hash_password(password), role),
                )

    print(f"BOOTSTRAP_ADMIN_CREATED email={email} role={role}")
    if not args.password:
        print(f"password: {password}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
