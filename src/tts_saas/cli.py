"""
Command-Line Interface for tts-saas Operators.

Usage Examples:
    # Create the ledger tables
    tts-saas init-db

    # Give a user 50,000 characters for 30 days (expires their current plan)
    tts-saas grant --user user-1 --credits 50000 --days 30 --plan pro

    # Expire every subscription past its end date
    tts-saas expire

    # Register an existing upstream voice handle as a user's clone
    tts-saas register-voice --user user-1 --voice-id voice_321 --name "Narrator"

    # Show the language catalogue (upstream, or the static fallback)
    tts-saas languages --json

Options available on every command:
    --settings PATH      Settings file (default: $TTS_SAAS_SETTINGS or config/settings.yaml)
    --database-url URL   Override ledger.database_url

Every command prints a JSON payload with "ok" when --json is given and
exits non-zero on failure.
"""
from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Dict, List, Optional

from tts_saas.core.config import ConfigValidationError, Settings, load_settings
from tts_saas.core.logging import configure_logging, fail, get_logger, info

_LOG = get_logger("tts-saas.cli")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--settings", help="Settings YAML path")
    common.add_argument("--database-url", help="Ledger database URL override")
    common.add_argument("--json", action="store_true", help="Print machine-readable JSON")

    parser = argparse.ArgumentParser(
        prog="tts-saas",
        description="Operator commands for the tts-saas front end",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", parents=[common], help="Create ledger tables")

    grant = sub.add_parser("grant", parents=[common], help="Grant a subscription")
    grant.add_argument("--user", required=True, help="User id")
    grant.add_argument("--credits", type=int, required=True, help="Characters purchased")
    grant.add_argument("--days", type=int, required=True, help="Validity in days")
    grant.add_argument("--plan", default="default", help="Plan name")

    sub.add_parser("expire", parents=[common], help="Expire overdue subscriptions")

    voice = sub.add_parser("register-voice", parents=[common], help="Register a voice clone handle")
    voice.add_argument("--user", required=True, help="User id")
    voice.add_argument("--voice-id", required=True, help="Upstream speaker handle")
    voice.add_argument("--name", required=True, help="Display name")

    sub.add_parser("languages", parents=[common], help="Show the language catalogue")

    return parser.parse_args(argv)


def _settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.settings)
    if args.database_url:
        raw = dict(settings.raw)
        raw["ledger"] = dict(raw.get("ledger") or {}, database_url=args.database_url)
        settings = Settings(raw=raw)
    return settings


def _emit(args: argparse.Namespace, payload: Dict[str, Any]) -> None:
    if args.json:
        print(json.dumps(payload, ensure_ascii=False, default=str))
    else:
        for key, value in payload.items():
            if key != "ok":
                print(f"{key}: {value}")


async def _run(args: argparse.Namespace, settings: Settings) -> Dict[str, Any]:
    from tts_saas.ledger import LedgerStore

    config = settings.get_service_config()

    if args.command == "languages":
        from tts_saas.gateway import SynthesisGateway

        gateway = SynthesisGateway.from_config(config.gateway)
        try:
            catalogue = await gateway.get_languages()
        finally:
            await gateway.aclose()
        return {"ok": True, "languages": catalogue}

    store = LedgerStore.from_url(config.ledger.database_url)
    try:
        if args.command == "init-db":
            return {"ok": True, "database": config.ledger.database_url.split("@")[-1]}

        if args.command == "grant":
            sub = await store.grant_subscription(args.user, args.credits, args.days, plan_name=args.plan)
            return {
                "ok": True,
                "subscription_id": sub.id,
                "user": sub.user_id,
                "credits": sub.credits_purchased,
                "expires_at": sub.expires_at.isoformat(),
            }

        if args.command == "expire":
            count = await store.expire_overdue()
            return {"ok": True, "expired": count}

        if args.command == "register-voice":
            clone = await store.register_voice_clone(args.user, args.voice_id, args.name)
            return {"ok": True, "voice_clone_id": clone.id, "voice_id": clone.voice_id}
    finally:
        store.dispose()

    raise ValueError(f"unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point.

    Returns:
        Process exit code (0 on success)
    """
    args = _parse_args(argv)
    configure_logging()

    try:
        settings = _settings(args)
        payload = asyncio.run(_run(args, settings))
    except (FileNotFoundError, ConfigValidationError, ValueError) as e:
        fail(_LOG, "cli_failed", command=args.command, error=str(e))
        _emit(args, {"ok": False, "error": str(e)})
        return 1

    info(_LOG, "cli_done", command=args.command)
    if args.command == "languages" and not args.json:
        for lang in payload["languages"]["tts"]["languages"]:
            print(f"{lang['code']:<4} {lang['name']:<24} {lang.get('nllb_code') or ''}")
        return 0

    _emit(args, payload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
