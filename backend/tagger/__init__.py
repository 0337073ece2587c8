"""Newsletter archive tagging: LLM tag extraction, canonicalization and storage."""

__version__ = "0.1.0"
