# src/pageviews/models/view_count.py
"""Authoritative per-slug view counters."""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from pageviews.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ViewCount(Base):
    """Server-side view count for one piece of content.

    The slug is the content key shared with clients; rows are created lazily
    by the first increment and never decremented.
    """

    __tablename__ = "view_count"
    __table_args__ = (CheckConstraint("count >= 0", name="ck_view_count_non_negative"),)

    slug: Mapped[str] = mapped_column(Text, primary_key=True)
    count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )
