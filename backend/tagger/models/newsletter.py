"""Newsletter model for archived newsletter posts.

The Newsletter model is the unit of content the tagging pipeline classifies:
- id: Stable identifier assigned by the newsletter platform
- subject/body: Raw post content as synced
- normalized_markdown: Cleaned markdown rendering, preferred over body when present
- publish_date: Used to order newsletters newest first

Newsletters are written by the sync job; the tagging pipeline only reads them.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tagger.core.database import Base


class Newsletter(Base):
    """Newsletter model for archived newsletter posts.

    Attributes:
        id: Platform identifier (primary key)
        subject: Post subject line
        body: Raw post body
        normalized_markdown: Cleaned markdown version of the body
        publish_date: When the post was published
        created_at: Timestamp when record was created
    """

    __tablename__ = "newsletters"

    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )

    subject: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    body: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    normalized_markdown: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    publish_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def content(self) -> str:
        """Text used for classification: normalized markdown when available."""
        return self.normalized_markdown or self.body

    def __repr__(self) -> str:
        return f"<Newsletter(id={self.id!r}, subject={self.subject[:40]!r})>"
