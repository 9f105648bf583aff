"""Data access helpers for working with view counters."""
from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pageviews.models.view_count import ViewCount

__all__ = ["ViewsRepository"]


class ViewsRepository:
    """Thin wrapper around database access for view counters."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_count(self, slug: str) -> int:
        """Return the authoritative count for ``slug``; unknown slugs count as 0."""
        count = self.session.execute(
            select(ViewCount.count).where(ViewCount.slug == slug)
        ).scalar_one_or_none()
        return int(count or 0)

    def increment(self, slug: str) -> int:
        """Atomically add one view to ``slug`` and return the new count.

        The new value comes back from the UPDATE itself, so concurrent
        increments each see their own count. The row is created at 1 when the
        slug has never been seen; a concurrent insert of the same slug falls
        back to the UPDATE path.
        """
        count = self._bump(slug)
        if count is not None:
            self.session.commit()
            return count

        try:
            self.session.add(ViewCount(slug=slug, count=1))
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            count = self._bump(slug)
            self.session.commit()
            return int(count or 0)
        return 1

    def popular(self, limit: int) -> list[tuple[str, int]]:
        """Return up to ``limit`` ``(slug, count)`` pairs, highest count first."""
        rows = self.session.execute(
            select(ViewCount.slug, ViewCount.count)
            .order_by(ViewCount.count.desc(), ViewCount.slug.asc())
            .limit(limit)
        ).all()
        return [(slug, int(count)) for slug, count in rows]

    def sample_slug(self) -> str | None:
        """Return any stored slug; used by the database health probe."""
        return self.session.execute(select(ViewCount.slug).limit(1)).scalar_one_or_none()

    def _bump(self, slug: str) -> int | None:
        """Add one to an existing row; None when ``slug`` has no row yet."""
        count = self.session.execute(
            update(ViewCount)
            .where(ViewCount.slug == slug)
            .values(count=ViewCount.count + 1)
            .returning(ViewCount.count)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()
        return None if count is None else int(count)
