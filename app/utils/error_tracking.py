"""Error-tracking sink (Sentry).

Only identifiers and the operation name are attached to events; message
content and credentials never leave the process.
"""

from __future__ import annotations

from typing import Any

import sentry_sdk
import structlog

from app.config import Settings

logger = structlog.get_logger("devmatch.error_tracking")

# Keys that must never be forwarded, whatever a caller passes.
_REDACTED_KEYS = frozenset({"content", "password", "token", "authorization"})


def init_error_tracking(settings: Settings) -> bool:
    """Initialise Sentry when a DSN is configured.  Returns whether it did."""
    if not settings.SENTRY_DSN:
        logger.info("error_tracking_disabled", reason="SENTRY_DSN not configured")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
    )
    logger.info("error_tracking_enabled", environment=settings.ENVIRONMENT)
    return True


def capture_exception(exc: BaseException, operation: str, **context: Any) -> None:
    """Report ``exc`` tagged with ``operation`` and identifier context."""
    safe_context = {
        k: str(v) for k, v in context.items()
        if k not in _REDACTED_KEYS and v is not None
    }
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("operation", operation)
        for key, value in safe_context.items():
            scope.set_tag(key, value)
        scope.set_context("devmatch", {"operation": operation, **safe_context})
        sentry_sdk.capture_exception(exc)
