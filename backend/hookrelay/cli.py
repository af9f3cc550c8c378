"""CLI tool for HookRelay operations.

Usage:
    python -m hookrelay.cli sign --secret s3cret payload.json
    echo '{"event": "x"}' | python -m hookrelay.cli sign --secret s3cret
    python -m hookrelay.cli verify --secret s3cret --signature 5d41... payload.json
    python -m hookrelay.cli retry-sweep
    python -m hookrelay.cli cleanup --delivery-days 30 --inbound-days 90
"""

import argparse
import asyncio
import json
import logging
import sys


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _read_payload(path: str | None) -> str:
    # Signatures cover the exact bytes, so the trailing newline is kept
    if path and path != "-":
        with open(path, encoding="utf-8", newline="") as f:
            return f.read()
    return sys.stdin.read()


def _cmd_sign(args) -> int:
    from hookrelay.core.security import generate_signature

    print(generate_signature(_read_payload(args.file), args.secret))
    return 0


def _cmd_verify(args) -> int:
    from hookrelay.core.security import verify_signature

    ok = verify_signature(_read_payload(args.file), args.signature, args.secret)
    print("valid" if ok else "invalid")
    return 0 if ok else 1


async def _cmd_retry_sweep(args) -> int:
    """Resume overdue deliveries once and wait for the attempts to finish."""
    from hookrelay.core.database import async_session, engine
    from hookrelay.services.container import WebhookServices

    services = WebhookServices.build(async_session)
    try:
        resumed = await services.engine.process_pending_retries()
        await services.scheduler.drain()
        print(json.dumps({"resumed": resumed}))
    finally:
        await services.aclose()
        await engine.dispose()
    return 0


async def _cmd_cleanup(args) -> int:
    from datetime import datetime, timezone

    from hookrelay.core.database import create_worker_session_factory
    from hookrelay.workers.cleanup_worker import purge_webhook_history

    session_factory, db_engine = create_worker_session_factory()
    try:
        counts = await purge_webhook_history(
            session_factory,
            now=datetime.now(timezone.utc),
            delivery_retention_days=args.delivery_days,
            inbound_retention_days=args.inbound_days,
        )
    finally:
        await db_engine.dispose()
    print(json.dumps(counts))
    return 0


def main(argv: list[str] | None = None) -> int:
    from hookrelay.config import settings

    parser = argparse.ArgumentParser(
        prog="hookrelay",
        description="HookRelay CLI: sign payloads, resume retries, prune history",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # --- sign ---
    sign_parser = subparsers.add_parser("sign", help="Print the HMAC-SHA256 signature of a payload")
    sign_parser.add_argument("file", nargs="?", default="-", help="Payload file (default: stdin)")
    sign_parser.add_argument("--secret", required=True, help="Subscription secret")

    # --- verify ---
    verify_parser = subparsers.add_parser("verify", help="Check a payload signature")
    verify_parser.add_argument("file", nargs="?", default="-", help="Payload file (default: stdin)")
    verify_parser.add_argument("--secret", required=True, help="Subscription secret")
    verify_parser.add_argument("--signature", required=True, help="X-Webhook-Signature value")

    # --- retry-sweep ---
    subparsers.add_parser("retry-sweep", help="Resume pending deliveries that are already due")

    # --- cleanup ---
    cleanup_parser = subparsers.add_parser("cleanup", help="Delete old webhook history")
    cleanup_parser.add_argument(
        "--delivery-days", type=int, default=settings.DELIVERY_RETENTION_DAYS,
        help="Keep finished deliveries newer than this many days",
    )
    cleanup_parser.add_argument(
        "--inbound-days", type=int, default=settings.INBOUND_LOG_RETENTION_DAYS,
        help="Keep inbound logs newer than this many days",
    )

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    _setup_logging(args.verbose)

    if args.command == "sign":
        return _cmd_sign(args)
    elif args.command == "verify":
        return _cmd_verify(args)
    elif args.command == "retry-sweep":
        return asyncio.run(_cmd_retry_sweep(args))
    elif args.command == "cleanup":
        return asyncio.run(_cmd_cleanup(args))
    return 1


if __name__ == "__main__":
    sys.exit(main())
