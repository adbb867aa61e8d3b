# backend/carebridge/monitoring/sentry.py
from __future__ import annotations

import logging
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

DEFAULT_TRACES_SAMPLE_RATE = 0.1


def init_sentry() -> bool:
    """Initialize Sentry when a DSN is configured. Returns True when enabled."""
    from ..core.config import settings

    dsn = settings.sentry_dsn.get_secret_value().strip() if settings.sentry_dsn else ""
    if not dsn:
        logger.debug("Sentry disabled: SENTRY_DSN not set")
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=settings.environment,
        integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        send_default_pii=False,
        traces_sample_rate=DEFAULT_TRACES_SAMPLE_RATE,
    )
    logger.info("Sentry initialized")
    return True


def is_sentry_configured() -> bool:
    return sentry_sdk.get_client().is_active()


def capture_reconciliation_alert(message: str, details: dict[str, Any]) -> None:
    """Send a fatal-level event with the reconciliation details attached."""
    if not is_sentry_configured():
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("alert_type", "critical_reconciliation")
        booking_id = details.get("booking_id")
        if booking_id:
            scope.set_tag("booking_id", str(booking_id))
        scope.set_context("reconciliation", details)
        sentry_sdk.capture_message(message, level="fatal")
