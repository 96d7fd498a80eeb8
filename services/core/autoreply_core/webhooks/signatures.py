"""Webhook signature verification.

Each platform signs deliveries differently:
- Facebook/Instagram: ``X-Hub-Signature-256: sha256=<hex>``, HMAC-SHA256 of
  the raw body keyed with the Meta app secret.
- WhatsApp (Twilio): ``X-Twilio-Signature``, base64 HMAC-SHA1 of the public
  webhook URL followed by the raw body, keyed with the auth token.
- Website forms: ``X-Signature``, HMAC-SHA256 hex of the raw body keyed with
  the form webhook secret.

All comparisons are constant-time.
"""

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional, Union

from autoreply_core.config import Settings

logger = logging.getLogger(__name__)


META_SIGNATURE_HEADER = "X-Hub-Signature-256"
WHATSAPP_SIGNATURE_HEADER = "X-Twilio-Signature"
FORM_SIGNATURE_HEADER = "X-Signature"

SIGNATURE_HEADERS = {
    "facebook": META_SIGNATURE_HEADER,
    "instagram": META_SIGNATURE_HEADER,
    "whatsapp": WHATSAPP_SIGNATURE_HEADER,
    "form": FORM_SIGNATURE_HEADER,
}

BytesLike = Union[bytes, str]


def _to_bytes(value: BytesLike) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def clean_secret(secret: Optional[str]) -> Optional[str]:
    """Strip whitespace and wrapping quotes picked up from ``.env`` files."""
    if secret is None:
        return None
    cleaned = secret.strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    return cleaned or None


# =============================================================================
# COMPUTE
# =============================================================================


def compute_meta_signature(secret: str, body: BytesLike) -> str:
    """Return the ``X-Hub-Signature-256`` value Meta would send for ``body``."""
    digest = hmac.new(_to_bytes(secret), _to_bytes(body), hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def compute_whatsapp_signature(secret: str, url: str, body: BytesLike) -> str:
    """Return the ``X-Twilio-Signature`` value for ``url`` + ``body``."""
    digest = hmac.new(
        _to_bytes(secret), _to_bytes(url) + _to_bytes(body), hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def compute_form_signature(secret: str, body: BytesLike) -> str:
    """Return the ``X-Signature`` hex digest for a form submission."""
    return hmac.new(_to_bytes(secret), _to_bytes(body), hashlib.sha256).hexdigest()


# =============================================================================
# VERIFY
# =============================================================================


def verify_meta_signature(secret: str, body: BytesLike, header: Optional[str]) -> bool:
    if not header or not secret:
        return False
    expected = compute_meta_signature(secret, body)
    return hmac.compare_digest(_to_bytes(header.strip()), _to_bytes(expected))


def verify_whatsapp_signature(
    secret: str, url: str, body: BytesLike, header: Optional[str]
) -> bool:
    if not header or not secret:
        return False
    expected = compute_whatsapp_signature(secret, url, body)
    return hmac.compare_digest(_to_bytes(header.strip()), _to_bytes(expected))


def verify_form_signature(secret: str, body: BytesLike, header: Optional[str]) -> bool:
    if not header or not secret:
        return False
    provided = header.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_form_signature(secret, body)
    return hmac.compare_digest(_to_bytes(provided.lower()), _to_bytes(expected))


# =============================================================================
# POLICY
# =============================================================================


@dataclass
class SignatureCheck:
    """Outcome of checking one delivery's signature.

    ``ok`` is True when the request may proceed, either because the
    signature matched or because verification was bypassed in development.
    ``config_error`` marks a rejection caused by a missing secret rather
    than a bad signature.
    """

    ok: bool
    bypassed: bool = False
    reason: Optional[str] = None
    config_error: bool = False

    @property
    def status_code(self) -> int:
        if self.ok:
            return 200
        return 500 if self.config_error else 403


class SignatureVerifier:
    """Apply the per-platform secret and the bypass policy."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def secret_for(self, platform: str) -> Optional[str]:
        if platform in ("facebook", "instagram"):
            return clean_secret(self.settings.meta_app_secret)
        if platform == "whatsapp":
            return clean_secret(self.settings.whatsapp_auth_token)
        if platform == "form":
            return clean_secret(self.settings.form_webhook_secret)
        return None

    def check(
        self,
        platform: str,
        body: bytes,
        header: Optional[str],
        url: Optional[str] = None,
    ) -> SignatureCheck:
        """Verify a delivery.

        Args:
            platform: facebook, instagram, whatsapp or form.
            body: Raw request body, exactly as received.
            header: Value of the platform's signature header, if any.
            url: Public URL of the request, used for WhatsApp when
                ``whatsapp_webhook_url`` is not configured.

        Returns:
            SignatureCheck describing whether to proceed.
        """
        secret = self.secret_for(platform)

        if not secret:
            if self.settings.is_development:
                logger.warning(
                    "Signature verification bypassed: no secret configured",
                    extra={"platform": platform},
                )
                return SignatureCheck(
                    ok=True, bypassed=True, reason="secret not configured"
                )
            logger.error(
                "Webhook secret not configured", extra={"platform": platform}
            )
            return SignatureCheck(
                ok=False, reason="Webhook secret not configured", config_error=True
            )

        if platform == "whatsapp":
            webhook_url = self.settings.whatsapp_webhook_url or url or ""
            valid = verify_whatsapp_signature(secret, webhook_url, body, header)
        elif platform == "form":
            valid = verify_form_signature(secret, body, header)
        else:
            valid = verify_meta_signature(secret, body, header)

        if not valid:
            logger.warning(
                "Invalid webhook signature",
                extra={"platform": platform, "has_header": bool(header)},
            )
            return SignatureCheck(
                ok=False,
                reason="Missing signature" if not header else "Invalid signature",
            )

        return SignatureCheck(ok=True)
