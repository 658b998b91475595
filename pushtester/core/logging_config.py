"""
Logging configuration for pushtester.

Provides:
- JSON formatted output (python-json-logger) or a readable text format
- Per-send correlation ID tracking via contextvars
- Optional rotating log file
- Redaction of private key blocks and bearer tokens
"""
import logging
import logging.handlers
import os
import contextvars
import re
import sys
from datetime import datetime, timezone
from typing import Optional
from pythonjsonlogger import jsonlogger

from pushtester.core.config import settings

# Context variable for send ID propagation
send_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'send_id', default=None
)

REDACTED = "[REDACTED]"

# PEM armoured private keys (PKCS#8, SEC1, encrypted)
_PEM_KEY_RE = re.compile(
    r'-----BEGIN [A-Z ]*PRIVATE KEY-----.*?(?:-----END [A-Z ]*PRIVATE KEY-----(?:\r?\n)?|$)',
    re.DOTALL,
)
# Provider authentication tokens in authorization headers
_BEARER_RE = re.compile(r'(?i)(bearer\s+)[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+')
# CR, LF and CRLF; collapsed so one record stays one line
_LINE_BREAK_RE = re.compile(r'\r\n|\r|\n')


def redact_secrets(value: str) -> str:
    """
    Replace private key blocks and bearer tokens in a string.

    Args:
        value: Text that may contain secrets

    Returns:
        Text with secrets replaced by [REDACTED]
    """
    value = _PEM_KEY_RE.sub(REDACTED, value)
    return _BEARER_RE.sub(lambda m: m.group(1) + REDACTED, value)


class SendIdFilter(logging.Filter):
    """
    Logging filter that adds send_id to all log records.

    The ID is set by APNsClient.send, so every line logged while one
    notification is being delivered can be correlated.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.send_id = send_id_var.get() or "-"
        return True


class SanitizingFilter(logging.Filter):
    """
    Keeps each record on one line and free of secrets.

    Line breaks are collapsed so a crafted value cannot forge extra log
    entries; PEM private key blocks and bearer tokens are replaced with
    [REDACTED] before that, since PEM blocks span lines.
    """

    def _clean(self, value):
        if not isinstance(value, str):
            return value
        return _LINE_BREAK_RE.sub(' ', redact_secrets(value))

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._clean(record.msg)

        if isinstance(record.args, dict):
            record.args = {key: self._clean(value) for key, value in record.args.items()}
        elif record.args:
            record.args = tuple(self._clean(arg) for arg in record.args)

        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    One JSON object per record, with fields every APNs log line shares.

    Example:
    {
        "timestamp": "2025-01-01T00:00:00.000000+00:00",
        "level": "WARNING",
        "message": "APNs notification rejected",
        "logger": "pushtester.services.push.apns_client",
        "module": "apns_client",
        "function": "send",
        "send_id": "0b7e...",
        "status_code": 400,
        "reason": "BadDeviceToken"
    }
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = log_record.get('timestamp') or datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).isoformat()
        log_record.setdefault('message', record.getMessage())
        log_record.update(
            level=record.levelname,
            logger=record.name,
            module=record.module,
            send_id=getattr(record, 'send_id', '-'),
        )
        if record.funcName:
            log_record['function'] = record.funcName


def _attach_handler(
    logger: logging.Logger,
    handler: logging.Handler,
    formatter: logging.Formatter,
    level: int,
) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(SendIdFilter())
    handler.addFilter(SanitizingFilter())
    logger.addHandler(handler)


def setup_logging(
    log_level: Optional[str] = None,
    json_output: Optional[bool] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for the pushtester package.

    Only the "pushtester" logger tree is configured so embedding
    applications keep control of the root logger. Calling it again
    replaces the previous handlers.

    Args:
        log_level: Level name (default from settings.LOG_LEVEL)
        json_output: Emit JSON lines on stderr (default from settings.LOG_JSON)
        log_file: Also write JSON lines to this rotating file (default from settings.LOG_FILE)

    Returns:
        The configured "pushtester" logger
    """
    level = logging.getLevelName((log_level or settings.LOG_LEVEL).upper())
    if not isinstance(level, int):
        level = logging.WARNING
    if json_output is None:
        json_output = settings.LOG_JSON
    log_file = log_file or settings.LOG_FILE

    json_formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')
    text_formatter = logging.Formatter(
        '%(asctime)s %(levelname)-8s %(name)s [%(send_id)s] %(message)s',
        defaults={'send_id': '-'},
    )

    package_logger = logging.getLogger('pushtester')
    package_logger.handlers.clear()
    package_logger.setLevel(level)
    package_logger.propagate = False

    # stdout belongs to the CLI's rendered output
    _attach_handler(
        package_logger,
        logging.StreamHandler(sys.stderr),
        json_formatter if json_output else text_formatter,
        level,
    )

    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        _attach_handler(
            package_logger,
            logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=5 * 1024 * 1024,
                backupCount=2,
                encoding='utf-8',
            ),
            json_formatter,
            level,
        )

    # h2/httpx chatter would drown out the delivery logs at DEBUG
    for noisy in ('httpx', 'httpcore', 'hpack', 'h2'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return package_logger


def set_send_id(send_id: Optional[str]) -> contextvars.Token:
    """
    Set the send ID for the current context.

    Returns:
        Token for clear_send_id
    """
    return send_id_var.set(send_id)


def clear_send_id(token: contextvars.Token) -> None:
    """Restore the send ID that was current before set_send_id."""
    send_id_var.reset(token)


def mask_device_token(device_token: str) -> str:
    """Shorten a device token for log output."""
    if len(device_token) <= 16:
        return device_token
    return device_token[:16] + "..."
