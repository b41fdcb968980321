"""Per-turn logging context.

Every log record carries the ``session_id`` and ``team_id`` of the turn
being handled. Webhook tasks spawned during a turn inherit the context
(asyncio copies context variables into new tasks), so a delivery logged
seconds later still names the conversation that produced it.

Usage:
    from matter_intake.logging_context import turn_context

    with turn_context("sess-abc123", "north-carolina-legal-services"):
        logger.info("Processing turn")  # → [north-carolina-legal-services/sess-abc123] Processing turn
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

UNSET = "-"

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s [%(team_id)s/%(session_id)s]: %(message)s"

_session_id: ContextVar[str] = ContextVar("session_id", default=UNSET)
_team_id: ContextVar[str] = ContextVar("team_id", default=UNSET)


def get_session_id() -> str:
    return _session_id.get()


def get_team_id() -> str:
    return _team_id.get()


@contextmanager
def turn_context(session_id: str, team_id: Optional[str] = None) -> Iterator[None]:
    """Bind session and team ids for the duration of one turn."""
    session_token = _session_id.set(session_id)
    team_token = _team_id.set(team_id or UNSET)
    try:
        yield
    finally:
        _team_id.reset(team_token)
        _session_id.reset(session_token)


class TurnContextFilter(logging.Filter):
    """Injects session_id and team_id into every record a handler sees."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = _session_id.get()  # type: ignore[attr-defined]
        record.team_id = _team_id.get()  # type: ignore[attr-defined]
        return True


def install_context_filter(logger: Optional[logging.Logger] = None) -> None:
    """Attach the filter to every handler of ``logger`` (root by default).

    Handler-level filters see records from all child loggers, so
    ``LOG_FORMAT`` can reference ``%(session_id)s`` safely.
    """
    logger = logger or logging.getLogger()
    for handler in logger.handlers:
        if not any(isinstance(f, TurnContextFilter) for f in handler.filters):
            handler.addFilter(TurnContextFilter())
