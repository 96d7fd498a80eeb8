"""Database infrastructure for Autoreply Core."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from autoreply_core.config import get_settings


def get_sync_engine() -> Engine:
    """Get synchronous database engine."""
    settings = get_settings()
    return create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=False,
    )


# Session factory
_sync_engine = None
_sync_session_factory = None


def get_sync_session_factory() -> sessionmaker[Session]:
    """Get synchronous session factory (singleton)."""
    global _sync_engine, _sync_session_factory
    if _sync_session_factory is None:
        _sync_engine = get_sync_engine()
        _sync_session_factory = sessionmaker(
            bind=_sync_engine,
            autocommit=False,
            autoflush=False,
        )
    return _sync_session_factory


def reset_session_factory() -> None:
    """Dispose the cached engine so the next call rebuilds it from settings."""
    global _sync_engine, _sync_session_factory
    if _sync_engine is not None:
        _sync_engine.dispose()
    _sync_engine = None
    _sync_session_factory = None
