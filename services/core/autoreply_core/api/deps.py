"""API dependencies for dependency injection."""

import logging
from typing import Annotated, Iterator, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from autoreply_core.config import Settings, get_settings
from autoreply_core.domain.services.audit import AuditSink
from autoreply_core.domain.services.automation_rules import AutomationRuleExecutor
from autoreply_core.domain.services.autoreply import AutoReplyDispatcher
from autoreply_core.domain.services.dedupe import DeliveryDeduplicator
from autoreply_core.domain.services.inbox import InboxService
from autoreply_core.domain.services.inference import InferenceClient, get_inference_client
from autoreply_core.domain.services.reply_generator import (
    AIResponder,
    InferenceAIResponder,
    ReplyGenerator,
)
from autoreply_core.domain.services.tenants import TenantResolver
from autoreply_core.infra.db import get_sync_session_factory
from autoreply_core.infrastructure.crypto import CryptoService, InvalidKeyError
from autoreply_core.providers import PlatformClient, build_platform_clients
from autoreply_core.webhooks.signatures import SignatureVerifier

logger = logging.getLogger(__name__)

_inference_client: Optional[InferenceClient] = None


def get_db() -> Iterator[Session]:
    """Get a database session."""
    session_factory = get_sync_session_factory()
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_app_settings() -> Settings:
    """Get application settings."""
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
DBSession = Annotated[Session, Depends(get_db)]


def get_crypto_service(settings: SettingsDep) -> Optional[CryptoService]:
    """Get the token crypto service, or None when no usable key is set."""
    try:
        return CryptoService.from_settings(settings)
    except InvalidKeyError as e:
        logger.error("ENCRYPTION_KEY unusable, stored tokens cannot be read", extra={"error": str(e)})
        return None


def get_platform_clients(settings: SettingsDep) -> dict[str, PlatformClient]:
    """Get the outbound platform clients."""
    return build_platform_clients(settings)


def get_ai_responder(settings: SettingsDep) -> Optional[AIResponder]:
    """Get the AI responder, or None when no inference endpoint is configured."""
    global _inference_client
    if not settings.inference_url:
        return None
    if _inference_client is None:
        _inference_client = get_inference_client(settings)
    return InferenceAIResponder(_inference_client)


async def close_inference_client() -> None:
    """Close the shared inference HTTP client."""
    global _inference_client
    if _inference_client is not None:
        await _inference_client.close()
        _inference_client = None


def get_signature_verifier(settings: SettingsDep) -> SignatureVerifier:
    return SignatureVerifier(settings)


def get_dispatcher(
    db: DBSession,
    settings: SettingsDep,
    crypto: Annotated[Optional[CryptoService], Depends(get_crypto_service)],
    clients: Annotated[dict[str, PlatformClient], Depends(get_platform_clients)],
    ai: Annotated[Optional[AIResponder], Depends(get_ai_responder)],
) -> AutoReplyDispatcher:
    """Wire the dispatch pipeline for one request."""
    deduplicator = None
    if settings.webhook_dedupe_enabled:
        deduplicator = DeliveryDeduplicator(db, settings.webhook_dedupe_ttl_seconds)

    audit = AuditSink(db)
    replies = ReplyGenerator(ai=ai, timeout=settings.ai_timeout_seconds)
    return AutoReplyDispatcher(
        audit=audit,
        resolver=TenantResolver(db, crypto),
        replies=replies,
        clients=clients,
        deduplicator=deduplicator,
        inbox=InboxService(db),
        rules=AutomationRuleExecutor(db, clients, replies, audit),
    )


# Type aliases for cleaner route signatures
VerifierDep = Annotated[SignatureVerifier, Depends(get_signature_verifier)]
DispatcherDep = Annotated[AutoReplyDispatcher, Depends(get_dispatcher)]
