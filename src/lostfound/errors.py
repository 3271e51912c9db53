"""Exception hierarchy shared by the enrichment and matching pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for lostfound pipeline errors."""

    def __init__(self, message: str, *, filename: str | None = None, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.filename = filename
        self.original_error = original_error


class ResolutionError(PipelineError):
    """Raised when a filename cannot be resolved to an image."""


class BlobNotFoundError(ResolutionError):
    """Raised when the image object does not exist in the blob store."""


class TransientModelError(PipelineError):
    """Raised when an AI call fails or times out; eligible for bounded retry."""


class ClassificationError(TransientModelError):
    """Raised when the image classifier call fails."""


class DescriptionError(TransientModelError):
    """Raised when the describer call fails."""


class MalformedResponseError(PipelineError):
    """Raised when a model response cannot be parsed into the expected shape."""

    def __init__(self, message: str, *, raw_text: str, filename: str | None = None) -> None:
        super().__init__(message, filename=filename)
        self.raw_text = raw_text


class DuplicateEnrichmentAttempt(PipelineError):
    """Raised when a filename already has a committed enrichment."""


class RecordStoreUnavailable(PipelineError):
    """Raised when the record store cannot be read or committed to."""


class InvalidClaimTransition(PipelineError):
    """Raised when a claim status change is not permitted."""

    def __init__(self, claim_id: str, current: str, requested: str) -> None:
        super().__init__(f"Claim {claim_id} cannot move from {current} to {requested}")
        self.claim_id = claim_id
        self.current = current
        self.requested = requested


__all__ = [
    "PipelineError",
    "ResolutionError",
    "BlobNotFoundError",
    "TransientModelError",
    "ClassificationError",
    "DescriptionError",
    "MalformedResponseError",
    "DuplicateEnrichmentAttempt",
    "RecordStoreUnavailable",
    "InvalidClaimTransition",
]
