#!/usr/bin/env python3
"""
authguard -- command-line access to the authentication core.

Runs the same AuthContext the API uses, against the registry configured by
REGISTRY_DB_URL, without starting a server.

Usage:
  python main.py register alice
  python main.py login alice
  python main.py status
  python main.py integrity
  python main.py repair
  python main.py errors --limit 20
  python main.py status --json

Secrets are read with a hidden prompt, or from AUTHGUARD_SECRET when set
(for scripted use). They are never accepted as command-line arguments because
argv is visible in process listings.

Environment variables:
  REGISTRY_DB_URL     SQLAlchemy URL of the user registry.
  AUTHGUARD_SECRET    Secret for register/login in non-interactive runs.
  AI_API_KEY          Enables the optional AI feature probe in `status`.
"""

import argparse
import getpass
import json
import os
import sys
from typing import Optional

from auth.context import AuthContext
from core.config import get_settings


def _read_secret(confirm: bool) -> Optional[str]:
    """Return the secret from AUTHGUARD_SECRET or an interactive prompt.

    Returns None when the confirmation prompt does not match.
    """
    env_secret = os.environ.get("AUTHGUARD_SECRET")
    if env_secret:
        return env_secret
    secret = getpass.getpass("Secret: ")
    if confirm and getpass.getpass("Confirm secret: ") != secret:
        return None
    return secret


def _print(data: dict, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2))
        return
    for key, value in data.items():
        print(f"  {key:<20} {value}")


def _fail(message: str, as_json: bool) -> int:
    if as_json:
        print(json.dumps({"error": message}))
    else:
        print(f"  [!] {message}")
    return 1


def cmd_register(context: AuthContext, args: argparse.Namespace) -> int:
    secret = _read_secret(confirm=True)
    if secret is None:
        return _fail("Secrets do not match.", args.json)
    result = context.register({"identifier": args.identifier, "secret": secret})
    if not result.ok:
        return _fail(result.error.message, args.json)
    _print({"registered": result.value.identifier, "created_at": result.value.created_at}, args.json)
    return 0


def cmd_login(context: AuthContext, args: argparse.Namespace) -> int:
    secret = _read_secret(confirm=False)
    result = context.login(args.identifier, secret or "")
    if not result.ok:
        return _fail(result.error.message, args.json)
    _print({"authenticated": result.value.identifier}, args.json)
    return 0


def cmd_status(context: AuthContext, args: argparse.Namespace) -> int:
    fallback = context.check_styling()
    availability = context.get_feature_availability()
    _print(
        {
            "storage_ready": context.storage_ready,
            "ai_enabled": availability.ai_enabled,
            "ai_reason": availability.reason,
            "style_fallback": fallback,
        },
        args.json,
    )
    return 0


def cmd_integrity(context: AuthContext, args: argparse.Namespace) -> int:
    result = context.gateway.integrity_report()
    if not result.ok:
        return _fail(result.error.message, args.json)
    _print(result.value.to_dict(), args.json)
    return 0 if not result.value.corrupt else 2


def cmd_repair(context: AuthContext, args: argparse.Namespace) -> int:
    result = context.gateway.repair_all()
    if not result.ok:
        return _fail(result.error.message, args.json)
    _print({"repaired": result.value}, args.json)
    return 0


def cmd_errors(context: AuthContext, args: argparse.Namespace) -> int:
    """Diagnostics recorded during this invocation (startup probes included)."""
    records = [r.to_dict() for r in context.reporter.recent_errors(args.limit)]
    if args.json:
        print(json.dumps(records, indent=2))
        return 0
    if not records:
        print("  No diagnostics recorded.")
    for r in records:
        print(f"  {r['created_at']}  {r['category']:<11} {r['code']:<26} {r['context']}")
    return 0


_COMMANDS = {
    "register": cmd_register,
    "login": cmd_login,
    "status": cmd_status,
    "integrity": cmd_integrity,
    "repair": cmd_repair,
    "errors": cmd_errors,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authguard",
        description="Register, log in, and inspect the authentication core.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py register alice
  AUTHGUARD_SECRET=correct-horse python main.py login alice
  python main.py integrity --json
        """,
    )
    parser.add_argument("--json", action="store_true", help="Output structured JSON")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("register", help="Create an account")
    p.add_argument("identifier")
    p = sub.add_parser("login", help="Check an identifier and secret")
    p.add_argument("identifier")
    sub.add_parser("status", help="Show dependency status (storage, AI config, styling)")
    sub.add_parser("integrity", help="Scan the registry for incomplete or corrupt records")
    sub.add_parser("repair", help="Repair every repairable registry record")
    p = sub.add_parser("errors", help="Show diagnostics recorded during this run")
    p.add_argument("--limit", type=int, default=50, metavar="N")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    context = AuthContext.from_settings(get_settings())
    context.start()
    try:
        return _COMMANDS[args.command](context, args)
    finally:
        context.close()


if __name__ == "__main__":
    sys.exit(main())
