#!/usr/bin/env python3
"""
SecureCMS -- Administrative command line.

Usage:
  python main.py init
  python main.py create-admin alice alice@example.com
  python main.py audit
  python main.py audit --table contents --entity 12
  python main.py audit --user 3 --limit 20 --json
  python main.py show-user 3
  python main.py show-user 3 --reveal

Environment variables:
  MASTER_ENCRYPTION_KEY  Required. Key material for SSN/phone field encryption.
  JWT_SECRET_KEY         Required. At least 32 characters.
  DATABASE_URL           Optional. Defaults to securecms.db next to this file.

Every write made from here is audited with the system actor.
"""

import argparse
import getpass
import json
import logging
import sys
from typing import Optional

from audit.models import SYSTEM_ACTOR, AuditRecord
from audit.store import DEFAULT_PAGE_SIZE
from auth.crypto import CryptoBox
from auth.passwords import CredentialStore
from auth.seed import seed_defaults
from auth.service import AuthService
from auth.tokens import SessionIssuer
from core.config import Settings, get_settings
from core.errors import CMSError, ConfigurationError
from db.database import Database

logger = logging.getLogger("securecms.cli")


def _build(settings: Settings) -> tuple[Database, AuthService]:
    db = Database(settings.database_url)
    service = AuthService(
        db,
        CryptoBox.from_settings(settings),
        CredentialStore.from_settings(settings),
        SessionIssuer.from_settings(settings),
        default_role=settings.default_role,
    )
    return db, service


def _format_record(record: AuditRecord) -> str:
    who = record.username or "-"
    state = record.new_values if record.new_values is not None else record.old_values
    entity = state.get("id", "-") if state else "-"
    return (
        f"  #{record.id:<6} {record.timestamp}  {record.operation.value:<6} "
        f"{record.table_name:<16} id={entity!s:<6} by {who}"
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init(db: Database, service: AuthService, args: argparse.Namespace) -> int:
    written = seed_defaults(db)
    if written:
        print(f"  Seeded {written} permission/role row(s).")
    else:
        print("  Defaults already present, nothing to do.")
    return 0


def cmd_create_admin(db: Database, service: AuthService, args: argparse.Namespace) -> int:
    seed_defaults(db)
    password = args.password or getpass.getpass("  Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    subject = service.register(
        args.username,
        args.email,
        password,
        full_name=args.full_name,
        role_name="Admin",
        actor=SYSTEM_ACTOR,
    )
    print(f"  Created admin '{subject.username}' (id={subject.id}).")
    return 0


def cmd_audit(db: Database, service: AuthService, args: argparse.Namespace) -> int:
    with db.unit_of_work() as uow:
        records = uow.audit.query(
            table_name=args.table,
            subject_id=args.user,
            entity_id=args.entity,
            page_size=args.limit,
        )
    if args.json:
        payload = [
            {
                "id": r.id,
                "table_name": r.table_name,
                "operation": r.operation.value,
                "user_id": r.user_id,
                "username": r.username,
                "old_values": r.old_values,
                "new_values": r.new_values,
                "timestamp": r.timestamp,
                "ip_address": r.ip_address,
                "user_agent": r.user_agent,
            }
            for r in records
        ]
        print(json.dumps(payload, indent=2, default=str))
        return 0
    if not records:
        print("  No audit records match.")
        return 0
    for record in records:
        print(_format_record(record))
    return 0


def cmd_show_user(db: Database, service: AuthService, args: argparse.Namespace) -> int:
    subject = service.get_subject(args.user_id)
    if subject is None:
        print(f"  [!] No user with id {args.user_id}.")
        return 1
    with db.unit_of_work() as uow:
        roles = uow.rbac.role_names_for_subject(subject.id)
    print(f"  {subject.username} <{subject.email}>  id={subject.id}")
    print(f"  Active:     {'yes' if subject.is_active else 'no'}")
    print(f"  Roles:      {', '.join(roles) or '-'}")
    print(f"  Last login: {subject.last_login or 'never'}")
    if args.reveal:
        # Decryption is a read; it is logged rather than audited.
        logger.warning("Sensitive fields of subject %s revealed from the command line", subject.id)
        sensitive = service.reveal_sensitive(subject.id)
        print(f"  SSN:        {sensitive['ssn'] or '-'}")
        print(f"  Phone:      {sensitive['phone'] or '-'}")
    return 0


COMMANDS = {
    "init": cmd_init,
    "create-admin": cmd_create_admin,
    "audit": cmd_audit,
    "show-user": cmd_show_user,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="securecms",
        description="SecureCMS administration: seed defaults, create admins, read the audit trail.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("init", help="Create the schema and seed default permissions and roles")

    admin = sub.add_parser("create-admin", help="Register a user holding the Admin role")
    admin.add_argument("username")
    admin.add_argument("email")
    admin.add_argument("--full-name", default=None)
    admin.add_argument(
        "--password",
        default=None,
        help="Password (prompted for when omitted; prefer the prompt over shell history)",
    )

    audit = sub.add_parser("audit", help="Print audit records, newest first")
    audit.add_argument("--table", default=None, metavar="NAME", help="Only records for this table")
    audit.add_argument("--user", type=int, default=None, metavar="ID", help="Only actions by this user id")
    audit.add_argument(
        "--entity", type=int, default=None, metavar="ID", help="Only records whose new state has this id"
    )
    audit.add_argument(
        "--limit", type=int, default=DEFAULT_PAGE_SIZE, help=f"Maximum records (default: {DEFAULT_PAGE_SIZE})"
    )
    audit.add_argument("--json", action="store_true", help="Output structured JSON")

    show = sub.add_parser("show-user", help="Show a user's profile and roles")
    show.add_argument("user_id", type=int)
    show.add_argument("--reveal", action="store_true", help="Decrypt and print SSN and phone")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command is None:
        parser.print_help()
        return 0

    try:
        settings = get_settings()
    except ConfigurationError as exc:
        print(f"  [!] Configuration error: {exc.message}")
        return 2

    db, service = _build(settings)
    try:
        return COMMANDS[args.command](db, service, args)
    except CMSError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
