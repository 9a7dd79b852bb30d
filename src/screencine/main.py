# -*- coding: utf-8 -*-
"""Application entry point."""

from __future__ import annotations

import logging
from pathlib import Path

from screencine.cli.main import app
from screencine.constants import APP_NAME
from screencine.utils.logger import setup_session_logging


def main() -> int:
    """Run the command line interface with per-session logging."""
    session_log_path = setup_session_logging(Path.cwd(), APP_NAME)
    logger = logging.getLogger(__name__)
    if session_log_path is not None:
        logger.info("Session log file: %s", session_log_path)
    try:
        app()
    except SystemExit as exc:
        if exc.code is None:
            return 0
        return exc.code if isinstance(exc.code, int) else 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
