#!/usr/bin/env python3
"""
idcore -- operator CLI for the identity admin core.

Works directly against the database (no running API needed). Its main job is
bootstrapping: the HTTP API only issues keys to an already-authenticated admin,
so the first admin key has to come from here.

Usage:
  python main.py issue-key --owner-id u-1 --owner-name alice --name bootstrap
  python main.py issue-key --owner-id u-2 --owner-name ci --name ci-bot --scopes clients:read
  python main.py list-keys [--owner-id u-1]
  python main.py revoke-key KEY_ID [--reason "leaked in CI log"]
  python main.py export-audit [--category Client] [--since 2026-01-01] > audit.csv

Environment variables:
  DATABASE_URL  SQLAlchemy URL (default: idcore.db in the project root). Overridden by --database-url.
  SECRET_KEY    Required unless DEBUG=true. Keys issued under one SECRET_KEY do
                not verify under another.
"""

import argparse
import sys
from datetime import datetime
from typing import Optional

from api.services import Services, build_services
from audit.formatter import to_csv
from audit.models import Actor, AuditQuery
from core.errors import AdminError


def _parse_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"'{value}' is not an ISO 8601 date/time") from exc


def _split(value: Optional[str]) -> Optional[list[str]]:
    if value is None:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


def _cli_actor(user_id: Optional[str] = None, user_name: Optional[str] = "cli", email: Optional[str] = None) -> Actor:
    return Actor(user_id=user_id, user_name=user_name, email=email, ip_address=None, user_agent="idcore-cli")


def _issue_key(services: Services, args: argparse.Namespace) -> int:
    issued = services.api_keys.issue(
        _cli_actor(args.owner_id, args.owner_name, args.email),
        args.name,
        expires_at=args.expires_at,
        scopes=_split(args.scopes),
    )
    print(f"  id:         {issued.id}")
    print(f"  name:       {issued.name}")
    print(f"  prefix:     {issued.key_prefix}")
    print(f"  scopes:     {', '.join(issued.scopes) if issued.scopes is not None else '(unrestricted)'}")
    print(f"  expires_at: {issued.expires_at.isoformat() if issued.expires_at else 'never'}")
    print(f"\n  key: {issued.secret}")
    print("\n  Store this key now. It cannot be shown again.")
    return 0


def _list_keys(services: Services, args: argparse.Namespace) -> int:
    views = services.api_keys.list(owner_id=args.owner_id)
    if not views:
        print("  No API keys.")
        return 0
    for v in views:
        if v.is_revoked:
            state = "revoked"
        elif v.is_expired:
            state = "expired"
        else:
            state = "active"
        last_used = v.last_used_at.isoformat() if v.last_used_at else "never"
        print(f"  {v.id}  {v.key_prefix}  {state:<8} {v.owner_name:<20} {v.name}  (last used: {last_used})")
    return 0


def _revoke_key(services: Services, args: argparse.Namespace) -> int:
    services.api_keys.revoke(args.key_id, _cli_actor(), reason=args.reason)
    print(f"  Revoked {args.key_id}.")
    return 0


def _export_audit(services: Services, args: argparse.Namespace) -> int:
    rows = services.audit.export(
        AuditQuery(
            start=args.since,
            end=args.until,
            category=args.category,
            user_id=args.user_id,
            keyword=args.keyword,
        )
    )
    sys.stdout.write(to_csv(rows))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="idcore",
        description="Operator CLI for the idcore identity admin core.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py issue-key --owner-id u-1 --owner-name alice --name bootstrap
  python main.py list-keys
  python main.py revoke-key 3f2a... --reason rotated
  python main.py export-audit --category ApiKey > apikey-audit.csv
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    issue = sub.add_parser("issue-key", help="Issue an API key and print it once")
    issue.add_argument("--owner-id", required=True, help="Subject id of the key owner")
    issue.add_argument("--owner-name", required=True, help="Display name of the key owner")
    issue.add_argument("--email", default=None, help="Owner e-mail (optional)")
    issue.add_argument("--name", required=True, help="Key label, e.g. 'ci-bot'")
    issue.add_argument(
        "--scopes",
        default=None,
        metavar="LIST",
        help="Comma-separated scope restriction (default: unrestricted)",
    )
    issue.add_argument("--expires-at", type=_parse_datetime, default=None, metavar="WHEN", help="ISO 8601 expiry")
    issue.set_defaults(handler=_issue_key)

    list_keys = sub.add_parser("list-keys", help="List API keys (never shows secrets)")
    list_keys.add_argument("--owner-id", default=None, help="Only keys owned by this subject")
    list_keys.set_defaults(handler=_list_keys)

    revoke = sub.add_parser("revoke-key", help="Revoke an API key permanently")
    revoke.add_argument("key_id", help="Key id as shown by list-keys")
    revoke.add_argument("--reason", default=None, help="Reason recorded on the key and in the audit log")
    revoke.set_defaults(handler=_revoke_key)

    export = sub.add_parser("export-audit", help="Write audit entries as CSV to stdout")
    export.add_argument("--since", type=_parse_datetime, default=None, metavar="WHEN")
    export.add_argument("--until", type=_parse_datetime, default=None, metavar="WHEN")
    export.add_argument("--category", default=None)
    export.add_argument("--user-id", default=None)
    export.add_argument("--keyword", default=None)
    export.set_defaults(handler=_export_audit)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 2

    services = build_services(args.database_url)
    try:
        return args.handler(services, args)
    except AdminError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        if exc.fields:
            for field, problems in exc.fields.items():
                for problem in problems:
                    print(f"      {field}: {problem}", file=sys.stderr)
        return 1
    finally:
        services.close()


if __name__ == "__main__":
    sys.exit(main())
