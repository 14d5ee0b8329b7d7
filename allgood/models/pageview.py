from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from allgood.db.base import Base, utcnow


class Pageview(Base):
    """
    One anonymized request to a landing page. Rows are only ever inserted
    and purged by age.
    """
    __tablename__ = "pageviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False,
        index=True,
    )

    page: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    ip_anonymized: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    country: Mapped[str] = mapped_column(String(16), nullable=False, default="UNKNOWN")
    language: Mapped[str] = mapped_column(String(16), nullable=False, default="en")
    referrer: Mapped[str] = mapped_column(String(255), nullable=False, default="direct")
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")
    browser: Mapped[str] = mapped_column(String(32), nullable=False, default="Unknown")
    os: Mapped[str] = mapped_column(String(32), nullable=False, default="Unknown")
    device_type: Mapped[str] = mapped_column(String(16), nullable=False, default="unknown")

    is_bot: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Pageview id={self.id} page={self.page} bot={self.is_bot}>"
