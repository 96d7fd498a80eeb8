"""Facebook and Instagram Graph API clients."""

from autoreply_core.providers.meta.client import (
    FacebookClient,
    GraphAPIClient,
    InstagramClient,
)

__all__ = [
    "FacebookClient",
    "GraphAPIClient",
    "InstagramClient",
]
