"""Webhook API schemas."""

from typing import Optional

from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    """Acknowledgement returned to the platform for every accepted delivery."""

    ok: bool = True
    processed: int = Field(0, description="Entries that completed without raising")
    total: int = Field(0, description="Entries in the delivery")
    error: Optional[str] = Field(None, description="Set when processing raised")


class ErrorResponse(BaseModel):
    """Rejection body for bad signatures, bad JSON and missing configuration."""

    error: str
