# propauth/cli/__main__.py
from __future__ import annotations

import argparse
import sys

from propauth.db import init_db, session_scope
from propauth.domain.roles import ROLE_TABLE_VERSION, find_unknown_roles
from propauth.logging_config import configure_logging


def _check_roles() -> int:
    with session_scope() as db:
        bad = find_unknown_roles(db)

    if not bad["users"] and not bad["members"]:
        print({"ok": True, "role_table": ROLE_TABLE_VERSION})
        return 0

    for uid, role in bad["users"]:
        print(f"user {uid}: unknown role {role!r}", file=sys.stderr)
    for mid, role in bad["members"]:
        print(f"member {mid}: unknown role {role!r}", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="propauth")
    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="create all tables")
    sub.add_parser("check-roles", help="fail if any stored user/member role is unknown")
    args = p.parse_args(argv)

    configure_logging()

    if args.command == "init-db":
        init_db()
        print({"ok": True})
        return 0

    return _check_roles()


if __name__ == "__main__":
    sys.exit(main())
