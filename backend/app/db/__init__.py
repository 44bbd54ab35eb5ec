"""Database module."""

from app.db.session import engine, async_session_factory, init_models
from app.db.models import Base, Company, Asset, DiscoveryJob
from app.db.repository import SqlJobRepository

__all__ = [
    "engine",
    "async_session_factory",
    "init_models",
    "Base",
    "Company",
    "Asset",
    "DiscoveryJob",
    "SqlJobRepository",
]
