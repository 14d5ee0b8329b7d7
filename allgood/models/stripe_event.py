from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from allgood.db.base import Base, utcnow


class StripeEvent(Base):
    """
    One row per webhook event id. Inserted before processing (the unique id
    is the dedup lock), then updated with what the pipeline did.
    """
    __tablename__ = "stripe_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    stripe_event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    event_type: Mapped[str] = mapped_column(String(255), nullable=False)
    livemode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stripe_event_created: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    received_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Filled once processing returns; NULL means it never finished
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    actions: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    errors: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
