"""
Database base configuration
"""
from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

# Create declarative base for SQLAlchemy models
Base = declarative_base()


def utcnow() -> datetime:
    # Columns are naive DateTime holding UTC; SQLite keeps no offset
    return datetime.now(timezone.utc).replace(tzinfo=None)


def import_models():
    """Import all models to register them with SQLAlchemy"""
    from allgood.models import pageview  # noqa: F401
    from allgood.models import stripe_event  # noqa: F401
