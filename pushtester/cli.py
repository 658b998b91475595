#!/usr/bin/env python3
"""
pushtester command line interface.

Sends a single test push notification through APNs:

    pushtester send -d <device token> -b com.example.app -t TEAMID1234 \\
        -k KEYID12345 --key-path AuthKey_KEYID12345.p8 \\
        -p '{"aps":{"alert":"hi"}}'

"send" is the default command, so it can be omitted. Payloads can be read
from a file with -p @path/to/payload.json.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import httpx

from pushtester import __version__
from pushtester.core.config import settings
from pushtester.core.logging_config import setup_logging
from pushtester.core.retry import RETRY_APNS_SEND, retry_async
from pushtester.services.push import token_validator
from pushtester.services.push.apns_client import APNsClient
from pushtester.services.push.exceptions import APNsError, ServerError
from pushtester.services.push.models import (
    DeliveryOutcome,
    Environment,
    NotificationRequest,
    PushCredentials,
)
from pushtester.utils.output_formatter import OutputFormatter, pretty_print_json

logger = logging.getLogger(__name__)

COMMANDS = ("send",)
DEFAULT_COMMAND = "send"


class PayloadFileError(Exception):
    """The @file payload could not be read."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pushtester",
        description="Send test push notifications via Apple Push Notification service (APNs)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    send_parser = subparsers.add_parser(
        "send",
        help="Send a push notification to a device"
    )
    send_parser.add_argument(
        "-d", "--device-token",
        required=True,
        help="The 64-character hex device token"
    )
    send_parser.add_argument(
        "-b", "--bundle-id",
        default=settings.APNS_BUNDLE_ID,
        help="The app's bundle identifier (e.g., com.example.app)"
    )
    send_parser.add_argument(
        "-t", "--team-id",
        default=settings.APNS_TEAM_ID,
        help="Your Apple Developer Team ID"
    )
    send_parser.add_argument(
        "-k", "--key-id",
        default=settings.APNS_KEY_ID,
        help="The APNs authentication key ID"
    )
    send_parser.add_argument(
        "--key-path",
        default=settings.APNS_KEY_FILE,
        help="Path to the .p8 authentication key file"
    )
    send_parser.add_argument(
        "-p", "--payload",
        required=True,
        help="JSON payload string or @filename to read from file"
    )
    send_parser.add_argument(
        "--production",
        action="store_true",
        help="Use production APNs environment (default is sandbox)"
    )
    send_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show verbose output including request details"
    )
    send_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help=f"Request timeout in seconds (default {settings.APNS_REQUEST_TIMEOUT:g})"
    )
    send_parser.add_argument(
        "--retries",
        type=int,
        default=0,
        help="Retry network errors and retryable APNs reasons this many times"
    )
    send_parser.add_argument(
        "--json-logs",
        action="store_true",
        default=settings.LOG_JSON,
        help="Write diagnostic logs to stderr as JSON"
    )
    send_parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Diagnostic log level (default from LOG_LEVEL)"
    )

    return parser


def _with_default_command(argv: List[str]) -> List[str]:
    if not argv or argv[0] in COMMANDS or argv[0] in ("-h", "--help", "--version"):
        return argv
    return [DEFAULT_COMMAND, *argv]


def resolve_payload(value: str) -> str:
    """
    Return the payload text, reading it from a file for "@path" values.

    Raises:
        PayloadFileError: If the file cannot be read
    """
    if not value.startswith("@"):
        return value

    file_path = value[1:]
    try:
        return Path(file_path).expanduser().read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        raise PayloadFileError(f"File not found or unreadable: {file_path}") from None


def _render_failure(
    output: OutputFormatter,
    status_code: int,
    reason: str,
    explanation: Optional[str],
    body: str = "",
    verbose: bool = False,
) -> None:
    output.print_error("Push notification failed")
    output.print_detail("Status", str(status_code))
    if reason:
        output.print_detail("Reason", reason)
        if explanation:
            output.blank()
            output.print_explanation(explanation)
    if verbose and body:
        output.print_detail("Response", body)


async def run_send(
    args: argparse.Namespace,
    output: OutputFormatter,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """
    Execute the send command.

    Returns:
        Process exit code (0 on a 200 response)
    """
    missing = [
        flag for flag, value in (
            ("--bundle-id", args.bundle_id),
            ("--team-id", args.team_id),
            ("--key-id", args.key_id),
            ("--key-path", args.key_path),
        ) if not value
    ]
    if missing:
        output.print_error("Missing required options", details=", ".join(missing))
        return 1

    problem = token_validator.validate(args.device_token)
    if problem:
        output.print_error("Invalid device token", details=problem)
        return 1
    device_token = token_validator.clean(args.device_token)

    try:
        payload = resolve_payload(args.payload)
    except PayloadFileError as e:
        output.print_error("Cannot read payload file", details=str(e))
        return 1

    try:
        json.loads(payload)
    except ValueError:
        output.print_error("Invalid JSON payload", details="The payload is not valid JSON")
        return 1

    key_path = Path(args.key_path).expanduser()
    if not key_path.exists():
        output.print_error("Key file not found", details=f"File does not exist: {args.key_path}")
        return 1

    environment = Environment.from_flag(args.production)

    if args.verbose:
        output.print_info("Configuration:")
        output.print_detail("Device Token", device_token)
        output.print_detail("Bundle ID", args.bundle_id)
        output.print_detail("Team ID", args.team_id)
        output.print_detail("Key ID", args.key_id)
        output.print_detail("Key Path", str(key_path))
        output.print_detail("Environment", "Production" if args.production else "Sandbox")
        output.print_detail("Payload", pretty_print_json(payload))
        output.blank()

    try:
        credentials = PushCredentials(team_id=args.team_id, key_id=args.key_id, key_path=key_path)
    except ValueError as e:
        output.print_error("Invalid credentials", details=str(e).splitlines()[0])
        return 1

    request = NotificationRequest(
        device_token=device_token,
        topic=args.bundle_id,
        payload=payload,
        environment=environment,
    )
    client = APNsClient(transport=transport, timeout=args.timeout)
    attempts = max(1, args.retries + 1)

    async def deliver() -> DeliveryOutcome:
        outcome = await client.send(request, credentials)
        if attempts > 1 and outcome.is_retryable:
            outcome.raise_for_status()
        return outcome

    try:
        outcome = await retry_async(
            deliver,
            config=RETRY_APNS_SEND.with_attempts(attempts),
            operation_name="apns_send",
        )
    except ServerError as e:
        _render_failure(
            output,
            e.status_code,
            e.reason,
            e.explanation,
            body=e.body,
            verbose=args.verbose,
        )
        return 1
    except APNsError as e:
        output.print_error("Failed to send push", details=str(e))
        return 1

    if outcome.success:
        output.print_success("Push notification sent successfully")
        output.print_detail("Status", f"{outcome.status_code} OK")
        if outcome.apns_id:
            output.print_detail("APNs ID", outcome.apns_id)
        return 0

    _render_failure(
        output,
        outcome.status_code,
        outcome.reason,
        outcome.explanation,
        body=outcome.body,
        verbose=args.verbose,
    )
    return 1


def run(
    argv: Optional[List[str]] = None,
    output: Optional[OutputFormatter] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """Parse arguments, run the command and return the exit code."""
    parser = build_parser()
    args = parser.parse_args(_with_default_command(list(sys.argv[1:] if argv is None else argv)))
    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(
        log_level="DEBUG" if args.verbose else args.log_level,
        json_output=args.json_logs,
    )
    return asyncio.run(run_send(args, output or OutputFormatter(), transport=transport))


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
