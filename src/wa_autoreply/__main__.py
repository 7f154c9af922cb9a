"""Command line entry point: ``wa-autoreply [start|config-check]``."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from wa_autoreply import __version__
from wa_autoreply.app import AutoReplyApp
from wa_autoreply.config import AppConfig, load_config
from wa_autoreply.log import setup_logging


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-c", "--config", default="config.yaml", help="YAML config file (default: config.yaml)")
    common.add_argument("-e", "--env", default=".env", help="dotenv file with secrets (default: .env)")

    parser = argparse.ArgumentParser(
        prog="wa-autoreply",
        description="WhatsApp auto-reply bot with keyword and LLM replies",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.set_defaults(command="start", config="config.yaml", env=".env")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    start = sub.add_parser("start", parents=[common], help="Connect and answer messages (default)")
    start.add_argument("--log-level", help="Override log_level from the config file")
    start.add_argument("--no-dashboard", action="store_true", help="Do not serve the HTTP dashboard")

    sub.add_parser("config-check", parents=[common], help="Validate the config and print a summary")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    config = _load_or_exit(args.config, args.env)

    if args.command == "config-check":
        _print_summary(config, args.config)
        return

    if getattr(args, "log_level", None):
        config.log_level = args.log_level
    if getattr(args, "no_dashboard", False):
        config.dashboard.enabled = False
    _run(config)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml (python install.py does this).", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Invalid configuration in {config_path}: {e}", file=sys.stderr)
        sys.exit(1)


def _print_summary(config: AppConfig, config_path: str) -> None:
    completion = config.completion
    rows = [
        ("Auth directory", config.whatsapp.auth_dir),
        ("Auth method", "phone number" if config.whatsapp.use_phone_number else "QR code"),
        (
            "Completion",
            f"{completion.backend} / {completion.model} "
            f"({'key set' if completion.enabled else 'no key, keyword/fallback replies only'})",
        ),
        ("Keywords", ", ".join(config.reply.keywords) or "(none)"),
        ("Reply to groups", str(config.reply.reply_to_groups)),
        ("History", f"{config.history.file} (max {config.history.max_messages}/contact)"),
        ("Retries", f"{config.session.max_retries} x {config.session.retry_interval}s"),
        (
            "Dashboard",
            f"http://{config.dashboard.host}:{config.dashboard.port}" if config.dashboard.enabled else "disabled",
        ),
    ]
    print(f"Configuration valid: {config_path}")
    width = max(len(label) for label, _ in rows)
    for label, value in rows:
        print(f"  {label:<{width}} : {value}")


def _run(config: AppConfig) -> None:
    setup_logging(config.log_level, json_output=config.log_json)

    async def serve() -> None:
        loop = asyncio.get_running_loop()
        shutdown = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, shutdown.set)
            except NotImplementedError:
                # No loop signal handlers on Windows
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(shutdown.set))

        app = AutoReplyApp(config)
        await app.start()
        try:
            await shutdown.wait()
        finally:
            await app.stop()

    asyncio.run(serve())


if __name__ == "__main__":
    main()
