# staysync/utils/log.py
import logging

import structlog

from .. import config

_CONFIGURED = False


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Configure structlog once for the process (idempotent)."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    lvl = getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO)
    logging.basicConfig(level=lvl, format="%(message)s")

    as_json = config.LOG_JSON if json_output is None else json_output
    renderer = (
        structlog.processors.JSONRenderer()
        if as_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True
