from __future__ import annotations

import logging
import os
import sys
from typing import Any, Dict

import structlog


def _resolve_level(value: str | None) -> int:
    level = logging.getLevelName((value or "INFO").strip().upper())
    if isinstance(level, int):
        return level
    return logging.INFO


def configure_logging(service_name: str) -> None:
    # stdout carries the MCP stdio protocol, so logs always go to stderr.
    logging.basicConfig(level=_resolve_level(os.getenv("LOG_LEVEL")), stream=sys.stderr)
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
    logger = structlog.get_logger(service=service_name)
    logger.info("logging_configured")


def log_event(logger: structlog.BoundLogger, event_type: str, payload: Dict[str, Any]) -> None:
    logger.info(event_type, **payload)


def get_logger(service_name: str) -> structlog.BoundLogger:
    return structlog.get_logger(service=service_name)
