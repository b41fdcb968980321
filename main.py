"""
Matter intake service entry point.

Usage:
    HTTP service: python main.py serve
    Console mode: python main.py console [--scenario intake]
"""

import logging
import sys

from matter_intake.config import settings

logger = logging.getLogger(__name__)


def _run_server() -> None:
    """Start the HTTP API (webhook log in DATABASE_URL, teams from TEAMS_FILE)."""
    import uvicorn

    from matter_intake.api.app import create_app

    logger.info("Serving matter intake API on %s:%d", settings.host, settings.port)
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


def _run_console_mode(argv: list[str]) -> None:
    """Start the offline console demo (no API keys required)."""
    from console_demo import main as console_main

    console_main(argv)


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "console":
        _run_console_mode(sys.argv[2:])
    else:
        _run_server()
