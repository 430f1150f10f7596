"""Logging setup and PII-safe log context helpers."""

import logging
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def build_log_context(
    *,
    org_id: str | None = None,
    user_id: str | None = None,
    appointment_id: str | None = None,
    event: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict with identifiers only."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = org_id
    if user_id:
        context["user_id"] = user_id
    if appointment_id:
        context["appointment_id"] = appointment_id
    if event:
        context["event"] = event
    return context
