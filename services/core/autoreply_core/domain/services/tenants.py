"""Tenant resolution for inbound webhook events.

Maps the page, Instagram account or WhatsApp phone number id found in a
delivery to the owning tenant and its decrypted access token. Unknown
pages and lapsed subscriptions resolve to None, which callers treat as a
silent no-op.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from autoreply_core.domain.models import (
    AutomationSettings,
    IntegrationToken,
    Platform,
    Tenant,
)
from autoreply_core.infrastructure.crypto import CryptoService, DecryptionError, mask_secret

logger = logging.getLogger(__name__)

# Platforms that share page ids on Meta deliveries
META_PLATFORMS = (Platform.FACEBOOK, Platform.INSTAGRAM)


@dataclass
class ResolvedTenant:
    """Tenant, token row and plaintext token for one event."""

    tenant: Tenant
    token: Optional[IntegrationToken]
    access_token: Optional[str]

    @property
    def tenant_id(self) -> int:
        return self.tenant.id


class TenantResolver:
    """Resolve platform page ids to active tenants."""

    def __init__(self, db: DBSession, crypto: Optional[CryptoService]):
        self.db = db
        self.crypto = crypto

    def find_token(self, platform: str, page_id: str) -> Optional[IntegrationToken]:
        """Find the token for a page, preferring an exact platform match.

        Meta delivers Instagram events on page-object webhooks, so a
        Facebook token with the same id serves Instagram and the reverse.
        WhatsApp phone number ids only match WhatsApp tokens.
        """
        token = self.db.scalars(
            select(IntegrationToken).where(
                IntegrationToken.platform == platform,
                IntegrationToken.page_id == page_id,
            )
        ).first()
        if token is not None or platform not in META_PLATFORMS:
            return token
        return self.db.scalars(
            select(IntegrationToken)
            .where(
                IntegrationToken.page_id == page_id,
                IntegrationToken.platform.in_(META_PLATFORMS),
            )
            .order_by(IntegrationToken.id)
        ).first()

    def resolve(self, platform: str, page_id: Optional[str]) -> Optional[ResolvedTenant]:
        """Resolve an event's page id to an active tenant.

        Args:
            platform: Platform the delivery came from.
            page_id: External page/account/phone number id.

        Returns:
            ResolvedTenant, or None if the page is unknown or disconnected,
            the tenant is missing or the subscription is not active.
        """
        if not page_id:
            return None

        token = self.find_token(platform, page_id)
        if token is None:
            logger.info("No token for page", extra={"platform": platform, "page_id": page_id})
            return None

        tenant = self.db.get(Tenant, token.tenant_id)
        if tenant is None:
            logger.warning(
                "Token owner missing",
                extra={"platform": platform, "page_id": page_id, "tenant_id": token.tenant_id},
            )
            return None

        if not tenant.is_subscribed:
            logger.warning(
                "Tenant subscription not active",
                extra={
                    "platform": platform,
                    "page_id": page_id,
                    "tenant_id": tenant.id,
                    "subscription_status": tenant.subscription_status,
                },
            )
            return None

        if self.crypto is None:
            logger.error(
                "No encryption key configured, treating page as disconnected",
                extra={"platform": platform, "page_id": page_id, "tenant_id": tenant.id},
            )
            return None

        try:
            access_token = self.crypto.decrypt(token.access_token_encrypted)
        except DecryptionError:
            logger.warning(
                "Stored access token cannot be decrypted, treating page as disconnected",
                extra={"platform": platform, "page_id": page_id, "tenant_id": tenant.id},
            )
            return None

        logger.debug(
            "Resolved tenant",
            extra={
                "platform": platform,
                "page_id": page_id,
                "tenant_id": tenant.id,
                "token_hint": mask_secret(access_token),
            },
        )
        return ResolvedTenant(tenant=tenant, token=token, access_token=access_token)

    def resolve_by_id(self, tenant_id: int) -> Optional[ResolvedTenant]:
        """Resolve a tenant directly, for form deliveries carrying a workspace id."""
        tenant = self.db.get(Tenant, tenant_id)
        if tenant is None:
            logger.info("Unknown tenant", extra={"tenant_id": tenant_id})
            return None
        if not tenant.is_subscribed:
            logger.warning(
                "Tenant subscription not active",
                extra={"tenant_id": tenant.id, "subscription_status": tenant.subscription_status},
            )
            return None
        return ResolvedTenant(tenant=tenant, token=None, access_token=None)

    def automation_settings(self, tenant_id: int) -> Optional[AutomationSettings]:
        return self.db.scalars(
            select(AutomationSettings).where(AutomationSettings.tenant_id == tenant_id)
        ).first()
