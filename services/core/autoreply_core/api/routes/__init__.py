"""API routes."""

from autoreply_core.api.routes import webhooks

__all__ = ["webhooks"]
