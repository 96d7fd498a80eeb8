"""Inbound webhook API routes.

Endpoints:
- GET /webhooks/{platform}: subscription handshake (hub.challenge echo)
- POST /webhooks/forms: signed website form submissions
- POST /webhooks/{platform}: Facebook, Instagram and WhatsApp deliveries

Accepted deliveries are always acknowledged with 200 so platforms do not
retry them; only signature failures, bad JSON and missing configuration
are rejected.
"""

import hmac
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from autoreply_core.api.deps import DispatcherDep, SettingsDep, VerifierDep
from autoreply_core.api.schemas.webhooks import ErrorResponse, WebhookAck
from autoreply_core.domain.models import Platform
from autoreply_core.domain.services.audit import AuditSink
from autoreply_core.webhooks.events import parse_form_submission
from autoreply_core.webhooks.signatures import SIGNATURE_HEADERS, SignatureCheck

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

DELIVERY_PLATFORMS = (Platform.FACEBOOK, Platform.INSTAGRAM, Platform.WHATSAPP)


def _require_platform(platform: str) -> None:
    if platform not in DELIVERY_PLATFORMS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown platform: {platform}",
        )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _parse_json(body: bytes) -> Any:
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None


def _audit_bypass(audit: AuditSink, platform: str, check: SignatureCheck) -> None:
    if check.bypassed:
        audit.warn(
            "Webhook signature verification bypassed",
            meta={"platform": platform, "reason": check.reason},
        )


# =============================================================================
# HANDSHAKE
# =============================================================================


@router.get(
    "/{platform}",
    response_class=PlainTextResponse,
    responses={400: {}, 403: {}, 404: {}, 500: {}},
)
async def verify_subscription(
    platform: str,
    settings: SettingsDep,
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Answer the platform's subscription handshake.

    Echoes ``hub.challenge`` when ``hub.verify_token`` matches the
    configured verify token. Stateless: repeating a valid request returns
    the same challenge.
    """
    _require_platform(platform)

    if hub_mode != "subscribe" or not hub_verify_token or not hub_challenge:
        logger.info(
            "Invalid webhook verification request",
            extra={"platform": platform, "mode": hub_mode, "has_challenge": bool(hub_challenge)},
        )
        return PlainTextResponse("Invalid verification request", status_code=400)

    expected = settings.verify_token_for(platform)
    if not expected:
        logger.error("Webhook verify token not configured", extra={"platform": platform})
        return PlainTextResponse("Webhook token not configured", status_code=500)

    if not hmac.compare_digest(hub_verify_token.encode(), expected.encode()):
        logger.warning("Webhook verify token mismatch", extra={"platform": platform})
        return PlainTextResponse("Invalid verify token", status_code=403)

    logger.info("Webhook verified", extra={"platform": platform})
    return PlainTextResponse(hub_challenge, status_code=200)


# =============================================================================
# WEBSITE FORMS
# =============================================================================


@router.post(
    "/forms",
    response_model=WebhookAck,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def receive_form_submission(
    request: Request,
    verifier: VerifierDep,
    dispatcher: DispatcherDep,
    x_signature: Optional[str] = Header(None),
    x_workspace_id: Optional[str] = Header(None),
):
    """Accept a signed website form submission as a lead."""
    body = await request.body()

    check = verifier.check(Platform.FORM, body, x_signature)
    if not check.ok:
        return _error(check.status_code, check.reason or "Signature verification failed")
    _audit_bypass(dispatcher.audit, Platform.FORM, check)

    payload = _parse_json(body)
    if not isinstance(payload, dict):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid JSON payload")

    workspace = x_workspace_id or payload.get("workspace_id") or payload.get("workspaceId")
    if not workspace:
        return _error(status.HTTP_400_BAD_REQUEST, "Missing workspace_id")
    try:
        tenant_id = int(workspace)
    except (TypeError, ValueError):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid workspace_id")

    submission = parse_form_submission(payload)
    if submission is None:
        return _error(status.HTTP_400_BAD_REQUEST, "Missing email or message")

    try:
        result = await dispatcher.process_form_submission(tenant_id, submission)
    except Exception as e:
        logger.exception("Form processing error")
        dispatcher.audit.error(
            f"Form processing error: {e}", meta={"workspace_id": tenant_id}
        )
        return WebhookAck(processed=0, total=1, error=str(e))

    if result.ignored_reason:
        logger.info(
            "Form submission ignored",
            extra={"workspace_id": tenant_id, "reason": result.ignored_reason},
        )
    return WebhookAck(**result.to_dict())


# =============================================================================
# PLATFORM DELIVERIES
# =============================================================================


@router.post(
    "/{platform}",
    response_model=WebhookAck,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {},
        500: {"model": ErrorResponse},
    },
)
async def receive_delivery(
    platform: str,
    request: Request,
    verifier: VerifierDep,
    dispatcher: DispatcherDep,
):
    """Verify and process a platform webhook delivery.

    The raw body is verified before it is parsed. Signature failures are
    rejected before any tenant lookup.
    """
    _require_platform(platform)
    body = await request.body()

    header = request.headers.get(SIGNATURE_HEADERS[platform])
    check = verifier.check(platform, body, header, url=str(request.url))
    if not check.ok:
        return _error(check.status_code, check.reason or "Invalid signature")
    _audit_bypass(dispatcher.audit, platform, check)

    payload = _parse_json(body)
    if payload is None:
        logger.warning("Webhook body is not JSON", extra={"platform": platform})
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid JSON")

    try:
        result = await dispatcher.process_delivery(platform, payload)
    except Exception as e:
        logger.exception("Webhook processing error", extra={"platform": platform})
        dispatcher.audit.error(
            f"Webhook processing error: {e}", meta={"platform": platform}
        )
        entries = payload.get("entry") if isinstance(payload, dict) else None
        total = len(entries) if isinstance(entries, list) else 0
        return WebhookAck(processed=0, total=total, error=str(e))

    if result.ignored_reason:
        logger.info(
            "Webhook delivery ignored",
            extra={"platform": platform, "reason": result.ignored_reason},
        )
    return WebhookAck(**result.to_dict())
