"""
agentscore CLI.

Commands:
    run                - Run the scoring pipeline on a fixed interval
    run-once           - Run a single pipeline cycle and exit
    serve-attestation  - Serve the attested scoring HTTP service
    init-db            - Create the database schema (local runs; production uses alembic)
    register           - Seed an agent ahead of the next cycle
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from agentscore import __version__
from agentscore.config import Settings, get_settings
from agentscore.effects import best_effort
from agentscore.storage.database import DatabaseManager
from agentscore.storage.repos import DiscoveredAgentRepository

logger = logging.getLogger("agentscore")


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ─── Commands ──────────────────────────────────────────────────────


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Run cycles until interrupted."""
    from agentscore.pipeline import Pipeline

    pipeline = Pipeline(settings)
    try:
        asyncio.run(pipeline.run())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


def cmd_run_once(args: argparse.Namespace, settings: Settings) -> int:
    """Run exactly one cycle; exit 1 if the cycle raised."""
    from agentscore.pipeline import Pipeline

    pipeline = Pipeline(settings)
    try:
        report = asyncio.run(pipeline.run_once())
    except Exception:
        logger.exception("Cycle failed")
        return 1
    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    return 0


def cmd_serve_attestation(args: argparse.Namespace, settings: Settings) -> int:
    """Serve the attested scoring service."""
    import uvicorn

    from agentscore.attestation import AttestationSigner, create_app
    from agentscore.chain.client import ChainClient
    from agentscore.chain.registry import RegistryReader

    if settings.attestation.mnemonic:
        signer = AttestationSigner.from_mnemonic(settings.attestation.mnemonic.get_secret_value())
    else:
        signer = AttestationSigner.ephemeral()

    rpc_url = settings.chain.rpc_url or ""
    client = ChainClient(
        rpc_url,
        fallback_rpc_url=settings.chain.fallback_rpc_url,
        timeout_seconds=settings.chain.rpc_timeout_seconds,
        max_requests_per_second=settings.chain.requests_per_second,
    )
    reader = RegistryReader(
        client,
        identity_address=settings.chain.identity_address,
        reputation_address=settings.chain.reputation_address,
    )
    db = DatabaseManager(settings.database.url)

    async def _close() -> None:
        try:
            await client.aclose()
        finally:
            await db.dispose_async()

    app = create_app(
        reader,
        signer,
        rpc_label=Settings._redact_path(rpc_url),
        session_factory=db.get_async_session,
        on_shutdown=_close,
    )
    logger.info("Attestation signer %s", signer.address)
    uvicorn.run(app, host=args.host or settings.attestation.host, port=args.port or settings.attestation.port)
    return 0


def cmd_init_db(args: argparse.Namespace, settings: Settings) -> int:
    """Create all tables."""

    async def _init() -> None:
        db = DatabaseManager(settings.database.url)
        try:
            await db.init_schema_async()
        finally:
            await db.dispose_async()

    asyncio.run(_init())
    logger.info("Schema created")
    return 0


def cmd_register(args: argparse.Namespace, settings: Settings) -> int:
    """Seed a DiscoveredAgent; look up its profile wallet if none was given."""
    from agentscore.social.client import SocialClient

    async def _register() -> dict[str, Any]:
        db = DatabaseManager(settings.database.url)
        try:
            async with db.get_async_session() as session:
                await DiscoveredAgentRepository(session).seed(args.handle, args.wallet)

            if not args.wallet:
                api_key = settings.social.api_key.get_secret_value() if settings.social.api_key else None
                async with SocialClient(
                    settings.social.base_url, api_key, timeout_seconds=settings.social.timeout_seconds
                ) as client:
                    wallet = await best_effort(
                        f"profile wallet for {args.handle}", client.get_profile_wallet(args.handle)
                    )
                if wallet:
                    async with db.get_async_session() as session:
                        await DiscoveredAgentRepository(session).seed(args.handle, wallet)

            async with db.get_async_session() as session:
                agent = await DiscoveredAgentRepository(session).get(args.handle)
        finally:
            await db.dispose_async()
        return {
            "handle": args.handle,
            "wallet_address": agent.wallet_address if agent else None,
        }

    result = asyncio.run(_register())
    print(json.dumps(result, indent=2))
    return 0


# ─── Parser ────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentscore",
        description="Agent reputation scoring pipeline",
    )
    parser.add_argument("--version", action="version", version=f"agentscore {__version__}")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    p = sub.add_parser("run", help="Run the pipeline on a fixed interval")
    p.add_argument("--dry-run", action="store_true", help="Log outreach decisions without posting")

    p = sub.add_parser("run-once", help="Run one pipeline cycle and exit")
    p.add_argument("--dry-run", action="store_true", help="Log outreach decisions without posting")
    p.add_argument("--json", action="store_true", help="Print the cycle report as JSON")

    p = sub.add_parser("serve-attestation", help="Serve the attested scoring service")
    p.add_argument("--host", default=None, help="Bind address (default: ATTESTATION_HOST)")
    p.add_argument("--port", type=int, default=None, help="Bind port (default: ATTESTATION_PORT)")

    sub.add_parser("init-db", help="Create database tables")

    p = sub.add_parser("register", help="Seed an agent ahead of the next cycle")
    p.add_argument("handle", help="Social handle of the agent")
    p.add_argument("--wallet", default=None, help="Wallet address, if already known")

    return parser


COMMANDS = {
    "run": cmd_run,
    "run-once": cmd_run_once,
    "serve-attestation": cmd_serve_attestation,
    "init-db": cmd_init_db,
    "register": cmd_register,
}


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = get_settings()
        if getattr(args, "dry_run", False):
            settings = settings.model_copy(update={"dry_run": True})
        if args.command in ("run", "run-once", "serve-attestation"):
            settings.validate_requirements(command=args.command)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    _configure_logging(settings)
    if args.command in ("run", "run-once"):
        logger.info("Settings: %s", settings.redacted_summary())

    try:
        return COMMANDS[args.command](args, settings)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
