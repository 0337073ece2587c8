"""Pydantic schemas."""

from tagger.schemas.tag import (
    MAX_TAGS_PER_NEWSLETTER,
    TagExtractionResponse,
    TagMappingResponse,
    TagResponse,
    TagStats,
    TagWithCount,
)

__all__ = [
    "MAX_TAGS_PER_NEWSLETTER",
    "TagExtractionResponse",
    "TagMappingResponse",
    "TagResponse",
    "TagStats",
    "TagWithCount",
]
