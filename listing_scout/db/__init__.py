# File: listing_scout/db/__init__.py
"""listing_scout.db: SQLAlchemy models, engine/session management and store operations."""

from .database import Base, Database

__all__ = ["Base", "Database"]
