"""Integration tests for the webhook API routes."""

import copy
import json
from unittest.mock import patch

import pytest
from sqlalchemy import select

from autoreply_core.domain.models import AuditLog
from autoreply_core.domain.services.tenants import TenantResolver
from autoreply_core.webhooks.signatures import (
    compute_form_signature,
    compute_meta_signature,
    compute_whatsapp_signature,
)
from tests.factories import (
    create_automation_rule,
    create_automation_settings,
    create_connected_tenant,
    create_tenant,
)


@pytest.fixture
def signed_meta(test_settings):
    """Sign a JSON payload with the Meta app secret."""

    def sign(payload) -> tuple[bytes, dict]:
        body = json.dumps(payload).encode()
        return body, {
            "Content-Type": "application/json",
            "X-Hub-Signature-256": compute_meta_signature(test_settings.meta_app_secret, body),
        }

    return sign


@pytest.fixture
def signed_form(test_settings):
    """Sign a JSON payload with the form webhook secret."""

    def sign(payload, **extra_headers) -> tuple[bytes, dict]:
        body = json.dumps(payload).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Signature": compute_form_signature(test_settings.form_webhook_secret, body),
            **extra_headers,
        }
        return body, headers

    return sign


def audit_rows(db_session) -> list[AuditLog]:
    return list(db_session.scalars(select(AuditLog).order_by(AuditLog.id)))


# =============================================================================
# HANDSHAKE
# =============================================================================


class TestVerifySubscription:
    """Tests for GET /webhooks/{platform}."""

    @pytest.mark.parametrize("platform", ["facebook", "instagram", "whatsapp"])
    async def test_echoes_challenge(self, client, test_settings, platform):
        response = await client.get(
            f"/webhooks/{platform}",
            params={
                "hub.mode": "subscribe",
                "hub.verify_token": test_settings.meta_verify_token,
                "hub.challenge": "1158201444",
            },
        )

        assert response.status_code == 200
        assert response.text == "1158201444"

    async def test_handshake_is_repeatable(self, client, test_settings):
        """The same valid request returns the same challenge every time."""
        params = {
            "hub.mode": "subscribe",
            "hub.verify_token": test_settings.meta_verify_token,
            "hub.challenge": "abc123",
        }

        first = await client.get("/webhooks/facebook", params=params)
        second = await client.get("/webhooks/facebook", params=params)

        assert first.status_code == second.status_code == 200
        assert first.text == second.text == "abc123"

    async def test_wrong_token_forbidden(self, client):
        response = await client.get(
            "/webhooks/facebook",
            params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "x"},
        )

        assert response.status_code == 403
        assert response.text == "Invalid verify token"

    @pytest.mark.parametrize(
        "params",
        [
            {"hub.mode": "unsubscribe", "hub.verify_token": "any-token", "hub.challenge": "x"},
            {"hub.mode": "subscribe", "hub.challenge": "x"},
            {"hub.mode": "subscribe", "hub.verify_token": "any-token"},
            {},
        ],
    )
    async def test_malformed_request_rejected(self, client, params):
        response = await client.get("/webhooks/facebook", params=params)
        assert response.status_code == 400

    async def test_missing_configured_token(self, client, test_settings):
        test_settings.meta_verify_token = None

        response = await client.get(
            "/webhooks/facebook",
            params={"hub.mode": "subscribe", "hub.verify_token": "any", "hub.challenge": "x"},
        )

        assert response.status_code == 500

    async def test_unknown_platform(self, client, test_settings):
        response = await client.get(
            "/webhooks/myspace",
            params={"hub.mode": "subscribe", "hub.verify_token": test_settings.meta_verify_token, "hub.challenge": "x"},
        )
        assert response.status_code == 404


# =============================================================================
# DELIVERIES
# =============================================================================


class TestReceiveDelivery:
    """Tests for POST /webhooks/{platform}."""

    async def test_comment_reply_end_to_end(
        self, client, signed_meta, db_session, crypto, platform_clients, facebook_comment_payload
    ):
        """A signed comment on a connected page gets the greeting as reply."""
        tenant, _, _ = create_connected_tenant(db_session, crypto, greeting_message="Thanks!")
        body, headers = signed_meta(facebook_comment_payload)

        response = await client.post("/webhooks/facebook", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"ok": True, "processed": 1, "total": 1}
        platform_clients["facebook"].reply_to_comment.assert_awaited_once_with(
            "post_1_comment_1", "Thanks!", "page-access-token"
        )
        rows = audit_rows(db_session)
        assert rows[-1].message == "Comment replied successfully"
        assert rows[-1].level == "info"
        assert rows[-1].tenant_id == tenant.id

    async def test_invalid_signature_rejected_before_lookup(
        self, client, db_session, crypto, platform_clients, facebook_comment_payload
    ):
        create_connected_tenant(db_session, crypto)
        body = json.dumps(facebook_comment_payload).encode()

        with patch.object(TenantResolver, "resolve") as mock_resolve:
            response = await client.post(
                "/webhooks/facebook",
                content=body,
                headers={
                    "Content-Type": "application/json",
                    "X-Hub-Signature-256": compute_meta_signature("not-the-secret", body),
                },
            )

        assert response.status_code == 403
        assert response.json() == {"error": "Invalid signature"}
        mock_resolve.assert_not_called()
        platform_clients["facebook"].reply_to_comment.assert_not_called()

    async def test_missing_signature_rejected(self, client, facebook_comment_payload):
        response = await client.post("/webhooks/facebook", json=facebook_comment_payload)

        assert response.status_code == 403
        assert response.json() == {"error": "Missing signature"}

    async def test_missing_secret_in_production(self, client, test_settings, facebook_comment_payload):
        test_settings.meta_app_secret = None

        response = await client.post("/webhooks/facebook", json=facebook_comment_payload)

        assert response.status_code == 500

    async def test_missing_secret_bypassed_in_development(
        self, client, db_session, test_settings, facebook_comment_payload
    ):
        test_settings.meta_app_secret = None
        test_settings.app_env = "development"

        response = await client.post("/webhooks/facebook", json=facebook_comment_payload)

        assert response.status_code == 200
        rows = audit_rows(db_session)
        assert rows[0].level == "warn"
        assert rows[0].message == "Webhook signature verification bypassed"

    async def test_invalid_json(self, client, test_settings):
        body = b"{not json"
        headers = {
            "Content-Type": "application/json",
            "X-Hub-Signature-256": compute_meta_signature(test_settings.meta_app_secret, body),
        }

        response = await client.post("/webhooks/facebook", content=body, headers=headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON"}

    async def test_unknown_platform(self, client):
        response = await client.post("/webhooks/myspace", json={"object": "page"})
        assert response.status_code == 404

    async def test_unconnected_page_acknowledged(
        self, client, signed_meta, platform_clients, facebook_comment_payload
    ):
        """Deliveries for pages nobody connected are still acknowledged."""
        body, headers = signed_meta(facebook_comment_payload)

        response = await client.post("/webhooks/facebook", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["processed"] == 1
        platform_clients["facebook"].reply_to_comment.assert_not_called()

    async def test_other_object_acknowledged(self, client, signed_meta):
        body, headers = signed_meta({"object": "user", "entry": [{"id": "1"}]})

        response = await client.post("/webhooks/facebook", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"ok": True, "processed": 0, "total": 0}

    async def test_dispatch_failure_still_acknowledged(
        self, client, signed_meta, db_session, facebook_comment_payload
    ):
        body, headers = signed_meta(facebook_comment_payload)

        with patch(
            "autoreply_core.domain.services.autoreply.AutoReplyDispatcher.process_delivery",
            side_effect=RuntimeError("database unavailable"),
        ):
            response = await client.post("/webhooks/facebook", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "processed": 0,
            "total": 1,
            "error": "database unavailable",
        }
        assert audit_rows(db_session)[-1].message == "Webhook processing error: database unavailable"

    async def test_whatsapp_message_end_to_end(
        self, client, db_session, crypto, test_settings, platform_clients, whatsapp_message_payload
    ):
        create_connected_tenant(
            db_session, crypto, platform="whatsapp", page_id="phone_1", greeting_message="Hi there!"
        )
        body = json.dumps(whatsapp_message_payload).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Twilio-Signature": compute_whatsapp_signature(
                test_settings.whatsapp_auth_token, test_settings.whatsapp_webhook_url, body
            ),
        }

        response = await client.post("/webhooks/whatsapp", content=body, headers=headers)

        assert response.status_code == 200
        platform_clients["whatsapp"].send_direct_message.assert_awaited_once_with(
            "15552223333", "Hi there!", "page-access-token", page_id="phone_1"
        )
        assert audit_rows(db_session)[-1].message == "Message replied successfully"

    async def test_duplicate_delivery_guard(
        self, client, signed_meta, db_session, crypto, test_settings, platform_clients, facebook_comment_payload
    ):
        test_settings.webhook_dedupe_enabled = True
        create_connected_tenant(db_session, crypto)
        body, headers = signed_meta(facebook_comment_payload)

        await client.post("/webhooks/facebook", content=body, headers=headers)
        await client.post("/webhooks/facebook", content=body, headers=headers)

        platform_clients["facebook"].reply_to_comment.assert_awaited_once()

    async def test_comment_edit_does_not_reply_again(
        self, client, signed_meta, db_session, crypto, platform_clients, facebook_comment_payload
    ):
        """An edit of an answered comment repeats its id and gets no second reply."""
        create_connected_tenant(db_session, crypto)
        body, headers = signed_meta(facebook_comment_payload)
        await client.post("/webhooks/facebook", content=body, headers=headers)

        edited = copy.deepcopy(facebook_comment_payload)
        edited["entry"][0]["changes"][0]["value"]["verb"] = "edited"
        edited["entry"][0]["changes"][0]["value"]["message"] = "Do you deliver on Sundays??"
        body, headers = signed_meta(edited)
        response = await client.post("/webhooks/facebook", content=body, headers=headers)

        assert response.status_code == 200
        platform_clients["facebook"].reply_to_comment.assert_awaited_once()


# =============================================================================
# WEBSITE FORMS
# =============================================================================


class TestReceiveFormSubmission:
    """Tests for POST /webhooks/forms."""

    async def test_lead_recorded(self, client, signed_form, db_session):
        tenant = create_tenant(db_session)
        body, headers = signed_form(
            {"email": "lead@example.com", "name": "Pat", "message": "Do you cater?"},
            **{"X-Workspace-Id": str(tenant.id)},
        )

        response = await client.post("/webhooks/forms", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"ok": True, "processed": 1, "total": 1}
        row = audit_rows(db_session)[-1]
        assert row.message == "Form submission received"
        assert row.tenant_id == tenant.id
        assert row.meta["sender_name"] == "Pat"

    async def test_lead_runs_tenant_rules(self, client, signed_form, db_session):
        tenant = create_tenant(db_session)
        create_automation_settings(db_session, tenant)
        create_automation_rule(
            db_session,
            tenant,
            trigger_type="keyword",
            trigger_words=["cater"],
            trigger_platforms=["form"],
        )
        body, headers = signed_form(
            {"email": "lead@example.com", "name": "Pat", "message": "Do you cater?"},
            **{"X-Workspace-Id": str(tenant.id)},
        )

        response = await client.post("/webhooks/forms", content=body, headers=headers)

        assert response.status_code == 200
        assert [r.message for r in audit_rows(db_session)] == [
            "Form submission received",
            "Automation rule DM queued",
            "Automation rules executed",
        ]

    async def test_workspace_from_body(self, client, signed_form, db_session):
        tenant = create_tenant(db_session)
        body, headers = signed_form(
            {"workspaceId": tenant.id, "email": "lead@example.com", "message": "Hi"}
        )

        response = await client.post("/webhooks/forms", content=body, headers=headers)

        assert response.status_code == 200
        assert audit_rows(db_session)[-1].tenant_id == tenant.id

    async def test_invalid_signature(self, client):
        body = json.dumps({"email": "a@b.c", "message": "Hi", "workspace_id": 1}).encode()

        response = await client.post(
            "/webhooks/forms",
            content=body,
            headers={"Content-Type": "application/json", "X-Signature": "deadbeef"},
        )

        assert response.status_code == 403

    async def test_missing_workspace(self, client, signed_form):
        body, headers = signed_form({"email": "a@b.c", "message": "Hi"})

        response = await client.post("/webhooks/forms", content=body, headers=headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing workspace_id"}

    async def test_invalid_workspace(self, client, signed_form):
        body, headers = signed_form({"email": "a@b.c", "message": "Hi", "workspace_id": "acme"})

        response = await client.post("/webhooks/forms", content=body, headers=headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid workspace_id"}

    async def test_missing_email(self, client, signed_form):
        body, headers = signed_form({"message": "Hi", "workspace_id": 1})

        response = await client.post("/webhooks/forms", content=body, headers=headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing email or message"}
