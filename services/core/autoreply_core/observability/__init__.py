"""Observability package for logging."""

from autoreply_core.observability.logging import (
    DeliveryContext,
    JsonFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
)

__all__ = [
    "DeliveryContext",
    "JsonFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
]
