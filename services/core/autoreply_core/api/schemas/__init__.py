"""API schemas."""

from autoreply_core.api.schemas.webhooks import ErrorResponse, WebhookAck

__all__ = [
    "ErrorResponse",
    "WebhookAck",
]
