"""Services layer - Business logic and orchestration.

Services coordinate between repositories and integrations to implement the
tagging pipeline. Database access is delegated to repositories and Claude
access to the integrations layer.
"""

from tagger.services.tag_canonicalization import (
    CanonicalizationResult,
    TagCanonicalizationService,
)
from tagger.services.tag_extraction import (
    ExtractionResult,
    TagExtractionError,
    TagExtractionService,
)
from tagger.services.tagging import (
    TaggingConfigurationError,
    TaggingPipeline,
    TaggingSummary,
    apply_canonical_mapping,
)

__all__ = [
    "CanonicalizationResult",
    "ExtractionResult",
    "TagCanonicalizationService",
    "TagExtractionError",
    "TagExtractionService",
    "TaggingConfigurationError",
    "TaggingPipeline",
    "TaggingSummary",
    "apply_canonical_mapping",
]
