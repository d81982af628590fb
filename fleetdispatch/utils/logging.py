"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from fleetdispatch.config import Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structured logging for the application."""
    settings = settings or get_settings()

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


class LifecycleLogger:
    """Specialized logger for delivery lifecycle activity."""

    def __init__(self, component: str):
        self.component = component
        self.logger = get_logger(component)

    def log_transition(
        self,
        delivery_id: str,
        previous_status: str,
        new_status: str,
        driver_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Log an applied status transition."""
        self.logger.info(
            "delivery_transition",
            component=self.component,
            delivery_id=delivery_id,
            previous_status=previous_status,
            new_status=new_status,
            driver_id=driver_id,
            **kwargs,
        )

    def log_assignment(
        self,
        delivery_id: str,
        driver_id: str,
        vehicle_id: str,
        **kwargs: Any,
    ) -> None:
        """Log a successful assignment."""
        self.logger.info(
            "delivery_assigned",
            component=self.component,
            delivery_id=delivery_id,
            driver_id=driver_id,
            vehicle_id=vehicle_id,
            **kwargs,
        )

    def log_rejected_request(
        self,
        action: str,
        delivery_id: str,
        errors: list[str],
        **kwargs: Any,
    ) -> None:
        """Log a request refused by validation or the state machine."""
        self.logger.warning(
            "request_refused",
            component=self.component,
            action=action,
            delivery_id=delivery_id,
            errors=errors,
            **kwargs,
        )
