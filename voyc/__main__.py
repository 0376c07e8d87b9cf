"""Entry point for running voyc as a module: python -m voyc"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from voyc import __version__
from voyc.config import Config

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_BAD_CONFIG = 2
EXIT_INTERRUPTED = 130

NOISY_LOGGERS = ("aiohttp", "asyncio", "sounddevice", "uvicorn.access")


def setup_logging(level: str) -> None:
    """Configure the root logger once."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # Reduce noise from third-party libraries
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def build_parser() -> argparse.ArgumentParser:
    from voyc.server import build_parser as build_serve_parser

    parser = argparse.ArgumentParser(prog="voyc", description="Voice dictation for the desktop")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="log at DEBUG level")
    parser.add_argument("--list-devices", action="store_true", help="list audio input devices and exit")
    parser.add_argument("--check-config", action="store_true", help="validate configuration and exit")

    subparsers = parser.add_subparsers(dest="command")
    build_serve_parser(subparsers.add_parser("serve", help="run the local control server"))
    return parser


def list_devices() -> int:
    from voyc.capture import list_input_devices

    print("🎤 Available audio input devices:")
    for device in list_input_devices():
        print(f"  {device}")
    return EXIT_OK


def check_config(config: Config) -> int:
    problems = config.validate()
    if not problems:
        print("✅ Configuration OK")
        return EXIT_OK
    for problem in problems:
        print(f"❌ {problem}")
    return EXIT_BAD_CONFIG


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    args = build_parser().parse_args(argv)
    config = Config.from_env()
    setup_logging("DEBUG" if args.verbose else config.log_level)

    if args.list_devices:
        return list_devices()

    if args.check_config:
        return check_config(config)

    if args.command == "serve":
        from voyc.server import serve

        try:
            serve(args.host, args.port, args.reload)
        except KeyboardInterrupt:
            return EXIT_INTERRUPTED
        return EXIT_OK

    problems = config.validate()
    if problems:
        for problem in problems:
            logging.error("Configuration problem: %s", problem)
        return EXIT_BAD_CONFIG

    return run_app(config)


def run_app(config: Config) -> int:
    from voyc.app import DictationApp

    app = DictationApp(config)

    try:
        app.run()
        return EXIT_OK
    except KeyboardInterrupt:
        print("\n👋 Interrupted")
        return EXIT_INTERRUPTED
    except Exception as e:
        logging.exception("Fatal error: %s", e)
        return EXIT_FATAL
    finally:
        app.shutdown()


if __name__ == "__main__":
    sys.exit(main())
