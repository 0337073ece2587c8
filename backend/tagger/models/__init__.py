"""SQLAlchemy models."""

from tagger.models.newsletter import Newsletter
from tagger.models.tag import NewsletterTag, Tag

__all__ = ["Newsletter", "NewsletterTag", "Tag"]
