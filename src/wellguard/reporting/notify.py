"""Alert delivery: Sentry ingestion and email."""

import logging
import socket
from typing import Any

import httpx

from wellguard.runtime import CommandRunner, resolve_binary, run_command

from .models import utc_now_iso

logger = logging.getLogger(__name__)


def send_sentry_event(
    dsn: str,
    message: str,
    level: str = "info",
    extra: dict[str, Any] | None = None,
    timeout: float = 10.0,
) -> bool:
    """POST an event to the Sentry endpoint; failures are logged, not raised."""
    if not dsn:
        return False
    payload = {
        "message": message,
        "level": level.lower(),
        "timestamp": utc_now_iso(),
        "server_name": socket.gethostname(),
        "tags": {"component": "wellguard"},
        "extra": extra or {},
    }
    try:
        response = httpx.post(dsn, json=payload, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPError:
        logger.warning("Failed to deliver Sentry event", exc_info=True)
        return False
    return True


async def send_email_alert(
    address: str,
    subject: str,
    body: str,
    command_runner: CommandRunner | None = None,
) -> bool:
    """Send an alert through the local ``mail`` binary."""
    if not address:
        return False
    if resolve_binary("mail") is None:
        logger.warning("mail binary not found; email alert to %s skipped", address)
        return False
    runner = command_runner or run_command
    try:
        await runner(["mail", "-s", subject, address], timeout=30, stdin_data=body)
    except RuntimeError:
        logger.warning("Failed to send email alert", exc_info=True)
        return False
    return True
