"""Pytest configuration and fixtures for Autoreply Core tests.

This module provides fixtures for:
- Database: SQLite in-memory with all tables created
- HTTP client: AsyncClient over ASGITransport for FastAPI testing
- Mocks: platform clients and httpx for outbound calls
"""

from collections.abc import AsyncGenerator, Generator
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from autoreply_core.config import Settings
from autoreply_core.domain.models import Base
from autoreply_core.infrastructure.crypto import CryptoService
from autoreply_core.providers.base import SendResult


META_APP_SECRET = "test-meta-app-secret"
META_VERIFY_TOKEN = "test-verify-token"
WHATSAPP_AUTH_TOKEN = "test-whatsapp-auth-token"
WHATSAPP_WEBHOOK_URL = "https://hooks.example.com/webhooks/whatsapp"
FORM_SECRET = "test-form-secret"


# -----------------------------------------------------------------------------
# Test Settings
# -----------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Production-like settings with every webhook secret configured."""
    return Settings(
        _env_file=None,
        database_url="sqlite+pysqlite:///:memory:",
        app_env="production",
        use_mock_mode=False,
        encryption_key=CryptoService.generate_key(),
        meta_verify_token=META_VERIFY_TOKEN,
        meta_app_secret=META_APP_SECRET,
        whatsapp_verify_token=META_VERIFY_TOKEN,
        whatsapp_auth_token=WHATSAPP_AUTH_TOKEN,
        whatsapp_webhook_url=WHATSAPP_WEBHOOK_URL,
        whatsapp_phone_number_id="phone_default",
        form_webhook_secret=FORM_SECRET,
        ai_timeout_seconds=1.0,
    )


@pytest.fixture
def crypto(test_settings) -> CryptoService:
    """Crypto service sharing the test settings key."""
    return CryptoService(test_settings.encryption_key)


# -----------------------------------------------------------------------------
# Synchronous Database Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sync_engine():
    """Create a synchronous SQLite in-memory engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # SQLite only autoincrements INTEGER PRIMARY KEY columns
    from sqlalchemy.dialects import sqlite
    original_visit = sqlite.dialect.type_compiler_cls.visit_BIGINT
    sqlite.dialect.type_compiler_cls.visit_BIGINT = lambda self, type_, **kw: "INTEGER"

    Base.metadata.create_all(bind=engine)

    sqlite.dialect.type_compiler_cls.visit_BIGINT = original_visit

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sync_session_factory(sync_engine) -> sessionmaker[Session]:
    """Create a synchronous session factory."""
    return sessionmaker(
        bind=sync_engine,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
def db_session(sync_session_factory) -> Generator[Session, None, None]:
    """Create a synchronous database session for testing."""
    session = sync_session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# -----------------------------------------------------------------------------
# Platform Client Fixtures
# -----------------------------------------------------------------------------


def make_platform_client(
    platform: str,
    supports_comment_replies: bool = True,
    reply_result: Optional[SendResult] = None,
    dm_result: Optional[SendResult] = None,
) -> MagicMock:
    """Build a platform client double with async send methods."""
    client = MagicMock()
    client.platform = platform
    client.supports_comment_replies = supports_comment_replies
    client.reply_to_comment = AsyncMock(
        return_value=reply_result or SendResult(success=True, external_id="reply_1")
    )
    client.send_direct_message = AsyncMock(
        return_value=dm_result or SendResult(success=True, external_id="mid_reply_1")
    )
    return client


@pytest.fixture
def platform_clients() -> dict[str, MagicMock]:
    """Platform client doubles keyed by platform."""
    return {
        "facebook": make_platform_client("facebook"),
        "instagram": make_platform_client("instagram"),
        "whatsapp": make_platform_client("whatsapp", supports_comment_replies=False),
    }


@pytest.fixture
def ai_responder() -> Optional[AsyncMock]:
    """AI collaborator used by the app; None means AI is not configured."""
    return None


# -----------------------------------------------------------------------------
# FastAPI Test Client Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def test_app(test_settings, db_session, platform_clients, ai_responder) -> FastAPI:
    """FastAPI app wired to the test database, settings and client doubles."""
    from autoreply_core.api.deps import (
        get_ai_responder,
        get_app_settings,
        get_db,
        get_platform_clients,
    )
    from autoreply_core.main import app

    app.state.settings = test_settings

    def override_get_db():
        yield db_session
        db_session.flush()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_app_settings] = lambda: test_settings
    app.dependency_overrides[get_platform_clients] = lambda: platform_clients
    app.dependency_overrides[get_ai_responder] = lambda: ai_responder

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing FastAPI endpoints."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


# -----------------------------------------------------------------------------
# Mock Fixtures for External Services
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_httpx_client() -> Generator[AsyncMock, None, None]:
    """Mock httpx.AsyncClient for testing outbound platform calls."""
    with patch("httpx.AsyncClient") as mock:
        mock_instance = AsyncMock()
        mock.return_value.__aenter__.return_value = mock_instance
        mock.return_value.__aexit__.return_value = None

        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_response.json.return_value = {}
        mock_instance.post.return_value = mock_response

        yield mock_instance


# -----------------------------------------------------------------------------
# Test Data Helpers
# -----------------------------------------------------------------------------


@pytest.fixture
def facebook_comment_payload() -> dict[str, Any]:
    """A Facebook page delivery with one feed comment."""
    return {
        "object": "page",
        "entry": [
            {
                "id": "page_1",
                "time": 1760000000,
                "changes": [
                    {
                        "field": "feed",
                        "value": {
                            "item": "comment",
                            "verb": "add",
                            "comment_id": "post_1_comment_1",
                            "post_id": "page_1_post_1",
                            "message": "Do you deliver on Sundays?",
                            "from": {"id": "user_42", "name": "Jane Doe"},
                            "created_time": 1760000000,
                        },
                    }
                ],
            }
        ],
    }


@pytest.fixture
def facebook_message_payload() -> dict[str, Any]:
    """A Facebook page delivery with one Messenger message."""
    return {
        "object": "page",
        "entry": [
            {
                "id": "page_1",
                "time": 1760000000,
                "messaging": [
                    {
                        "sender": {"id": "psid_7"},
                        "recipient": {"id": "page_1"},
                        "timestamp": 1760000000123,
                        "message": {"mid": "m_abc", "text": "What are your hours?"},
                    }
                ],
            }
        ],
    }


@pytest.fixture
def whatsapp_message_payload() -> dict[str, Any]:
    """A WhatsApp Business delivery with one text message."""
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "waba_1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {
                                "display_phone_number": "15550001111",
                                "phone_number_id": "phone_1",
                            },
                            "contacts": [
                                {"profile": {"name": "Sam"}, "wa_id": "15552223333"}
                            ],
                            "messages": [
                                {
                                    "from": "15552223333",
                                    "id": "wamid.1",
                                    "timestamp": "1760000000",
                                    "type": "text",
                                    "text": {"body": "Hi, is this open?"},
                                }
                            ],
                        },
                    }
                ],
            }
        ],
    }


# -----------------------------------------------------------------------------
# Cleanup Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    from autoreply_core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
