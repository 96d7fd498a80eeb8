"""Platform integrations for Autoreply.

This package contains the outbound platform clients:
- Base: Abstract interface and DTOs
- Meta: Facebook Page and Instagram Graph API clients
- WhatsApp: Cloud API client
"""

from autoreply_core.config import Settings
from autoreply_core.providers.base import PlatformClient, SendResult
from autoreply_core.providers.meta.client import FacebookClient, InstagramClient
from autoreply_core.providers.whatsapp.client import WhatsAppClient


def build_platform_clients(settings: Settings) -> dict[str, PlatformClient]:
    """Build the platform client registry from settings."""
    return {
        "facebook": FacebookClient(
            base_url=settings.graph_api_base_url,
            api_version=settings.graph_api_version,
            timeout=settings.platform_http_timeout,
        ),
        "instagram": InstagramClient(
            base_url=settings.graph_api_base_url,
            api_version=settings.graph_api_version,
            timeout=settings.platform_http_timeout,
        ),
        "whatsapp": WhatsAppClient(
            base_url=settings.graph_api_base_url,
            api_version=settings.whatsapp_api_version,
            default_phone_number_id=settings.whatsapp_phone_number_id,
            timeout=settings.platform_http_timeout,
        ),
    }


__all__ = [
    "FacebookClient",
    "InstagramClient",
    "PlatformClient",
    "SendResult",
    "WhatsAppClient",
    "build_platform_clients",
]
