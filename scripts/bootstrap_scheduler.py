#!/usr/bin/env python3
"""Emit SQL that registers the scheduler module credential or grants a human role."""

from __future__ import annotations

import argparse
import hashlib

SCHEDULER_SCOPES = (
    "jobs:read",
    "jobs:write",
    "citations:read",
    "citations:write",
    "compliance:read",
    "compliance:write",
)


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_module_sql(*, module_id: str, api_key: str, scopes: tuple[str, ...] = SCHEDULER_SCOPES) -> str:
    key_hash = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
    scope_array = "array[" + ", ".join(_quote_sql(scope) for scope in scopes) + "]::text[]"
    module_value = _quote_sql(module_id)

    return f"""-- Scheduler module credential bootstrap SQL
-- The API key itself is never stored; only its sha256 hash.

insert into modules (module_id, name, scopes, enabled)
values ({module_value}, {module_value}, {scope_array}, true)
on conflict (module_id) do update set scopes = excluded.scopes, enabled = true;

insert into module_credentials (module_id, key_hint, key_hash, is_active)
select id, {_quote_sql(api_key[-4:])}, {_quote_sql(key_hash)}, true
from modules
where module_id = {module_value};
"""


def render_role_sql(*, role: str, user_id: str | None, email: str | None) -> str:
    role_value = _quote_sql(role)
    if user_id:
        target_where = f"id = {_quote_sql(user_id)}::uuid"
    else:
        assert email is not None
        target_where = f"email = {_quote_sql(email)}"

    return f"""-- Supabase human role bootstrap SQL

update auth.users
set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', {role_value})
where {target_where};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to bootstrap citeguard credentials.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    module_parser = subparsers.add_parser("module", help="Register a machine module (the scheduler)")
    module_parser.add_argument("--module-id", default="citeguard-scheduler")
    module_parser.add_argument("--api-key", required=True)

    role_parser = subparsers.add_parser("role", help="Grant a Supabase user the editor or admin role")
    role_parser.add_argument("--role", choices=["editor", "admin"], default="admin")
    identity_group = role_parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")

    args = parser.parse_args()
    if args.command == "module":
        print(render_module_sql(module_id=args.module_id, api_key=args.api_key))
    else:
        print(render_role_sql(role=args.role, user_id=args.user_id, email=args.email))


if __name__ == "__main__":
    main()
