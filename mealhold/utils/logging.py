"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from mealhold.config import get_settings


def setup_logging() -> None:
    """Configure structured logging for the application."""
    settings = get_settings()

    # Configure standard library logging
    log_level = getattr(logging, settings.log_level)

    if settings.log_format == "json":
        # JSON logging for production
        handler = logging.StreamHandler(sys.stdout)
        formatter = jsonlogger.JsonFormatter(
            fmt="%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
        handler.setFormatter(formatter)
    else:
        # Human-readable logging for development
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class ReservationLogger:
    """Logger bound to one user's reservation lifecycle."""

    def __init__(self, user_id: str | None):
        self.user_id = user_id
        self.logger = get_logger("mealhold.lifecycle").bind(user_id=user_id)

    def log_transition(
        self,
        reservation_id: str,
        from_state: str | None,
        to_state: str,
        **kwargs: Any,
    ) -> None:
        """Log a reservation moving between statuses or phases."""
        self.logger.info(
            "reservation_transition",
            reservation_id=reservation_id,
            from_state=from_state,
            to_state=to_state,
            **kwargs,
        )

    def log_timer_fired(
        self,
        timer: str,
        reservation_id: str,
        overdue_ms: int,
    ) -> None:
        """Log a one-shot timer firing."""
        self.logger.info(
            "timer_fired",
            timer=timer,
            reservation_id=reservation_id,
            overdue_ms=overdue_ms,
        )

    def log_error(
        self,
        error: str,
        reservation_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Log an error."""
        self.logger.error(
            "reservation_error",
            reservation_id=reservation_id,
            error=error,
            **kwargs,
        )
