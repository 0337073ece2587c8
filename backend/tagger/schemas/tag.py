"""Pydantic schemas for tag extraction and tag queries.

Schemas for validating Claude responses:
- TagExtractionResponse: Raw tags returned for a single newsletter
- TagMappingResponse: Raw tag -> canonical tag mapping from canonicalization

Schemas for the read-side query surface:
- TagResponse: A canonical tag
- TagWithCount: A canonical tag with its newsletter count
- TagStats: Aggregate tag statistics
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tagger.models.tag import MAX_TAG_LENGTH

# Upper bound on tags kept per newsletter (the prompt asks for 3-8)
MAX_TAGS_PER_NEWSLETTER = 8


def _collapse_whitespace(value: str) -> str:
    return " ".join(value.split())


class TagExtractionResponse(BaseModel):
    """Tags Claude extracted for one newsletter.

    Non-string, blank and over-long (> MAX_TAG_LENGTH) entries are dropped,
    whitespace is collapsed, exact duplicates are removed and the list is
    capped at MAX_TAGS_PER_NEWSLETTER. A missing "tags" key means no tags.
    """

    tags: list[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v: Any) -> list[str]:
        """Coerce the raw tags payload into a clean list of strings."""
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("tags must be a list of strings")

        cleaned: list[str] = []
        for tag in v:
            if not isinstance(tag, str):
                continue
            tag = _collapse_whitespace(tag)
            if tag and len(tag) <= MAX_TAG_LENGTH and tag not in cleaned:
                cleaned.append(tag)
        return cleaned[:MAX_TAGS_PER_NEWSLETTER]


class TagMappingResponse(BaseModel):
    """Raw tag -> canonical tag mapping returned by canonicalization.

    Accepts {"mapping": {...}} or a flat {raw: canonical} object. Entries whose
    canonical value is not a non-blank string of at most MAX_TAG_LENGTH
    characters are dropped so that the raw tag falls back to itself.
    """

    mapping: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def wrap_flat_mapping(cls, data: Any) -> Any:
        """Treat a flat object as the mapping itself."""
        if isinstance(data, dict) and "mapping" not in data:
            return {"mapping": data}
        return data

    @field_validator("mapping", mode="before")
    @classmethod
    def clean_mapping(cls, v: Any) -> dict[str, str]:
        """Drop entries that do not map a string to a usable canonical string."""
        if not isinstance(v, dict):
            raise ValueError("mapping must be an object of strings")

        cleaned: dict[str, str] = {}
        for raw, canonical in v.items():
            if not isinstance(raw, str) or not isinstance(canonical, str):
                continue
            canonical = _collapse_whitespace(canonical)
            if canonical and len(canonical) <= MAX_TAG_LENGTH:
                cleaned[raw] = canonical
        return cleaned


class TagResponse(BaseModel):
    """A canonical tag."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    normalized_name: str
    created_at: datetime


class TagWithCount(TagResponse):
    """A canonical tag with the number of newsletters carrying it."""

    newsletter_count: int = 0


class TagStats(BaseModel):
    """Aggregate statistics over tags and associations."""

    total_tags: int = 0
    total_newsletter_tags: int = 0
    avg_tags_per_newsletter: float = 0.0
    max_tags_per_newsletter: int = 0
