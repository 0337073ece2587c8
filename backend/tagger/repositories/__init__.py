"""Repositories layer - Data access and persistence.

Repositories handle all database operations using SQLAlchemy.
They abstract the database implementation from the service layer.
"""

from tagger.repositories.newsletter import NewsletterRepository
from tagger.repositories.tag import (
    InvalidTagNameError,
    TagMergeError,
    TagMergeResult,
    TagNotFoundError,
    TagRepository,
    TagRepositoryError,
    normalize_tag_name,
)

__all__ = [
    "InvalidTagNameError",
    "NewsletterRepository",
    "TagMergeError",
    "TagMergeResult",
    "TagNotFoundError",
    "TagRepository",
    "TagRepositoryError",
    "normalize_tag_name",
]
