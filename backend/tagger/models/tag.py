"""Tag and NewsletterTag models for canonical topic tags.

Tag is a canonical label shared across newsletters:
- name: Display form, set by whichever writer created the tag first
- normalized_name: Deterministic key derived from name (unique)

NewsletterTag is the many-to-many association between newsletters and tags.
At most one row exists per (newsletter_id, tag_id); rows cascade away when
either side is deleted.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tagger.core.database import Base

# Column width of tag names; longer names are rejected or cut before insert
MAX_TAG_LENGTH = 255


class Tag(Base):
    """Tag model for canonical labels.

    Attributes:
        id: Integer primary key
        name: Display name (first writer wins)
        normalized_name: Lowercase hyphenated key, unique across all tags
        created_at: Timestamp when the tag was first referenced

    Example:
        name="Machine Learning", normalized_name="machine-learning"
    """

    __tablename__ = "tags"
    __table_args__ = (
        UniqueConstraint("normalized_name", name="uq_tags_normalized_name"),
    )

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    name: Mapped[str] = mapped_column(
        String(MAX_TAG_LENGTH),
        nullable=False,
    )

    normalized_name: Mapped[str] = mapped_column(
        String(MAX_TAG_LENGTH),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return f"<Tag(id={self.id!r}, name={self.name!r}, normalized={self.normalized_name!r})>"


class NewsletterTag(Base):
    """Association between a newsletter and a tag.

    Attributes:
        newsletter_id: Reference to the tagged newsletter
        tag_id: Reference to the canonical tag
    """

    __tablename__ = "newsletter_tags"

    newsletter_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("newsletters.id", ondelete="CASCADE"),
        primary_key=True,
    )

    tag_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<NewsletterTag(newsletter_id={self.newsletter_id!r}, tag_id={self.tag_id!r})>"
