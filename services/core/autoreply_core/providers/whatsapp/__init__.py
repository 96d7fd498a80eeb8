"""WhatsApp Business Cloud API client."""

from autoreply_core.providers.whatsapp.client import WhatsAppClient

__all__ = ["WhatsAppClient"]
