"""RADHAT CLI: deposit addresses and routing from the terminal.

Usage:
    radhat deposit <user>           Allocate a deposit address for a requester
    radhat list [--status S]        List deposits, oldest first
    radhat show <address>           Show one deposit
    radhat route                    Run one routing cycle
    radhat config                   Show current configuration
    radhat serve                    Run the HTTP service

Every command except ``config`` and ``serve`` talks to a running service
(``--api-url``, default ``http://localhost:<port>``).

Examples:
    radhat deposit 0x70997970C51812dc3A010C7d01b50e0d17dc79C8
    radhat list --status funded --json
    radhat route
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from radhat import __version__
from radhat.client import RadhatClient, RadhatClientError
from radhat.core.types import DepositInfo, DepositStatus, RouteBatchResult


# ── Coloured output helpers ──────────────────────────────────────────────────

_RESET = "\033[0m"
_BOLD = "\033[1m"
_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"

_STATUS_COLOR = {
    "pending": _DIM,
    "funded": _YELLOW,
    "deployed": _CYAN,
    "routed": _GREEN,
    "failed": _RED,
}


def _c(text: str, code: str) -> str:
    return f"{code}{text}{_RESET}"


# ── CLI argument parser ─────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="radhat",
        description="RADHAT: deterministic deposit addresses routed to one treasury",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--api-url", help="Service base URL (default: http://localhost:<port>)")
    parser.add_argument("--json", action="store_true", help="Print raw JSON")

    sub = parser.add_subparsers(dest="command")

    deposit_p = sub.add_parser("deposit", help="Allocate a deposit address")
    deposit_p.add_argument("user", help="Requester address (0x...)")

    list_p = sub.add_parser("list", help="List deposits")
    list_p.add_argument(
        "--status",
        choices=[s.value for s in DepositStatus],
        help="Only deposits in this status",
    )
    list_p.add_argument("--user", help="Only deposits of this requester")

    show_p = sub.add_parser("show", help="Show one deposit")
    show_p.add_argument("address", help="Deposit address (0x...)")

    sub.add_parser("route", help="Run one routing cycle")
    sub.add_parser("config", help="Show current configuration")

    serve_p = sub.add_parser("serve", help="Run the HTTP service")
    serve_p.add_argument("--host", help="Bind address (default: settings.host)")
    serve_p.add_argument("--port", type=int, help="Port (default: settings.port)")
    serve_p.add_argument("--reload", action="store_true", help="Reload on code changes")

    return parser


# ── Output ───────────────────────────────────────────────────────────────────


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _print_deposit(d: DepositInfo) -> None:
    status = _c(f"{d.status.value:<8}", _STATUS_COLOR.get(d.status.value, ""))
    print(f"  {_DIM}{d.nonce:>4}{_RESET}  {status}  {d.deposit_address}  {_DIM}{d.user_address}{_RESET}")
    if d.last_error:
        print(f"        {_c(d.last_error, _RED)}")


def _print_cycle(result: RouteBatchResult) -> None:
    print(
        f"\n{_BOLD}Routing cycle{_RESET}  checked={result.checked}  funded={result.funded}"
        f"  deployed={result.deployed}  routed={_c(str(result.routed), _GREEN)}"
    )
    if result.deploy_tx_hash:
        print(f"  deploy tx: {result.deploy_tx_hash}")
    for tx in result.route_transactions:
        print(f"  {_c('routed', _GREEN)} {tx.deposit_address}  {tx.amount} wei  {_DIM}{tx.tx_hash}{_RESET}")
    for err in result.errors:
        print(f"  {_c('error', _RED)} {err}")
    print()


# ── Commands ─────────────────────────────────────────────────────────────────


def _api_url(args: argparse.Namespace) -> str:
    if args.api_url:
        return args.api_url
    from radhat.core.config import get_settings

    return f"http://localhost:{get_settings().port}"


async def _run_remote(args: argparse.Namespace) -> int:
    async with RadhatClient(_api_url(args)) as client:
        if args.command == "deposit":
            created = await client.create_deposit(args.user)
            if args.json:
                _print_json(created.model_dump())
            else:
                print(f"\n  {_BOLD}{created.deposit_address}{_RESET}")
                print(f"  {_DIM}salt {created.salt}  nonce {created.nonce}{_RESET}")
                print(f"  {created.note}\n")
            return 0

        if args.command == "list":
            status = DepositStatus(args.status) if args.status else None
            listing = await client.list_deposits(status=status, user=args.user)
            if args.json:
                _print_json(listing.model_dump(mode="json"))
            elif not listing.deposits:
                print(_c("  No deposits.", _DIM))
            else:
                print(f"\n{_BOLD}{listing.total} deposit(s){_RESET}\n")
                for deposit in listing.deposits:
                    _print_deposit(deposit)
                print()
            return 0

        if args.command == "show":
            deposit = await client.get_deposit(args.address)
            if args.json:
                _print_json(deposit.model_dump(mode="json"))
            else:
                _print_deposit(deposit)
            return 0

        if args.command == "route":
            result = await client.run_router()
            if args.json:
                _print_json(result.model_dump())
            else:
                _print_cycle(result)
            return 0 if result.ok else 2

    return 1


def _run_config() -> int:
    """Print current settings (redacted)."""
    from radhat.core.config import get_settings

    s = get_settings()
    print(f"\n{_BOLD}RADHAT Configuration{_RESET}\n")
    for field_name in sorted(type(s).model_fields.keys()):
        val = getattr(s, field_name, "")
        if any(kw in field_name for kw in ("password", "secret", "key", "token")):
            val = "****" if val else "(not set)"
        print(f"  {_DIM}{field_name}:{_RESET}  {val}")
    print()
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from radhat.core.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "radhat.api.main:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
    )
    return 0


# ── Entrypoint ───────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"radhat {__version__}")
        return 0

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "config":
        return _run_config()

    if args.command == "serve":
        return _run_serve(args)

    try:
        return asyncio.run(_run_remote(args))
    except RadhatClientError as exc:
        print(_c(f"Error: {exc}", _RED), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
