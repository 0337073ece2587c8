"""Utility modules for the tagging pipeline.

This package contains the batch executor and the rate-limit retry wrapper.
"""

from tagger.utils.batch import (
    BatchFailure,
    BatchResult,
    BatchSuccess,
    process_batch,
    process_sequential,
)
from tagger.utils.retry import call_with_rate_limit_retry, is_rate_limit_error

__all__ = [
    "BatchFailure",
    "BatchResult",
    "BatchSuccess",
    "call_with_rate_limit_retry",
    "is_rate_limit_error",
    "process_batch",
    "process_sequential",
]
