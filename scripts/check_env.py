"""Verify the gateway's environment before starting the server.

The tool performs two checks:

1. It loads ``AppSettings`` from the given ``.env`` file and reports the
   integrations that cannot work with the resulting values (no Google client
   secrets, webhook enabled without a URL, ...).
2. It can record and verify a checksum for the ``.env`` file so edits made
   between deploys are noticed.

Example usages::

    python -m scripts.check_env check --env-file .env

    python -m scripts.check_env record --env-file /srv/gateway/.env \
        --hash-file /srv/gateway/.env.sha256
    python -m scripts.check_env verify --env-file /srv/gateway/.env \
        --hash-file /srv/gateway/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from gateway.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_READINESS_ERROR = 4
EXIT_RUNTIME_ERROR = 5


def _compute_hash(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _load_settings(env_file: Path) -> AppSettings:
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def readiness_problems(settings: AppSettings) -> list[str]:
    """Return human readable problems that would break an integration."""
    problems: list[str] = []
    if not Path(settings.google.credentials_path).exists():
        problems.append(
            f"GOOGLE_CREDENTIALS_PATH: {settings.google.credentials_path} does not exist."
        )
    if settings.webhook.enabled and not settings.webhook.url:
        problems.append("WEBHOOK_ENABLED is true but WEBHOOK_URL is not set.")
    if settings.quickbooks.refresh_window_seconds >= 3600:
        problems.append(
            "QBO_REFRESH_WINDOW is at least one hour; every tick would refresh the token."
        )
    if (
        settings.quickbooks.refresh_enabled
        and settings.quickbooks.refresh_window_seconds
        <= settings.quickbooks.refresh_interval_seconds
    ):
        problems.append(
            "QBO_REFRESH_WINDOW is not longer than QBO_REFRESH_INTERVAL; "
            "a token can expire between two refresh ticks."
        )
    if settings.quickbooks.token_path and not settings.security.token_encryption_secret:
        problems.append(
            "QBO_TOKEN_PATH is set without TOKEN_ENCRYPTION_SECRET; tokens are stored in clear."
        )
    return problems


def _record_checksum(env_file: Path, hash_file: Path) -> int:
    checksum = _compute_hash(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify_checksum(env_file: Path, hash_file: Path) -> int:
    """Compare the current checksum to the recorded baseline."""
    if not hash_file.exists():
        print(
            f"Expected checksum file {hash_file} is missing. "
            "Re-run with the 'record' command to establish a baseline.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _compute_hash(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        "Environment checksum mismatch!\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate gateway settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_env_file(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env).",
        )

    for name, help_text in (
        ("record", "Validate settings and store the checksum baseline."),
        ("verify", "Validate settings and compare with the checksum baseline."),
    ):
        subparser = subparsers.add_parser(name, help=help_text)
        add_env_file(subparser)
        subparser.add_argument("--hash-file", required=True, type=Path)

    check_parser = subparsers.add_parser(
        "check", help="Validate settings and report integration problems."
    )
    add_env_file(check_parser)
    check_parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit non-zero when any integration problem is found.",
    )
    return parser


def _check(settings: AppSettings, strict: bool) -> int:
    problems = readiness_problems(settings)
    if not problems:
        print("Environment OK.")
        return EXIT_OK
    for problem in problems:
        print(f"WARNING: {problem}", file=sys.stderr)
    return EXIT_READINESS_ERROR if strict else EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    env_file: Path = args.env_file
    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    handlers: dict[str, Callable[[], int]] = {
        "record": lambda: _record_checksum(env_file, args.hash_file),
        "verify": lambda: _verify_checksum(env_file, args.hash_file),
        "check": lambda: _check(settings, args.strict),
    }
    return handlers[args.command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
