"""Error taxonomy for the skin report pipeline.

Per-page errors (timeouts, transient upstream failures, schema violations)
are captured by the pipeline and attached to the report as skipped pages.
Pipeline-level errors (invalid format, oversize payloads, too few usable
pages, broken aggregation invariants) abort before a report exists.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar


class ErrorKind(str, Enum):
    INVALID_FORMAT = "InvalidFormat"
    TOO_LARGE = "TooLarge"
    CLASSIFICATION_AMBIGUOUS = "ClassificationAmbiguous"
    EXTRACTION_TIMEOUT = "ExtractionTimeout"
    EXTRACTION_TRANSIENT = "ExtractionTransient"
    SCHEMA_VIOLATION = "SchemaViolation"
    EXTRACTION_FAILED = "ExtractionFailed"
    INSUFFICIENT_DATA = "InsufficientData"
    AGGREGATION_INVARIANT_VIOLATION = "AggregationInvariantViolation"


class AnalysisError(Exception):
    """Base class for every error the pipeline raises.

    Attributes:
        kind:        The :class:`ErrorKind` surfaced to callers.
        retryable:   Whether the extractor may retry the failed call.
        page_number: 1-based page the error belongs to, if any.
        attempts:    Number of upstream calls made before giving up.
    """

    kind: ClassVar[ErrorKind]
    retryable: ClassVar[bool] = False

    def __init__(self, message: str, *, page_number: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.page_number = page_number
        self.attempts = 1

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "pageNumber": self.page_number,
        }


# ── Intake ──


class InvalidFormatError(AnalysisError):
    kind = ErrorKind.INVALID_FORMAT


class TooLargeError(AnalysisError):
    kind = ErrorKind.TOO_LARGE


# ── Classification (never raised past the classifier) ──


class ClassificationAmbiguous(AnalysisError):
    kind = ErrorKind.CLASSIFICATION_AMBIGUOUS


# ── Extraction ──


class ExtractionError(AnalysisError):
    """Any failure of a single page extraction."""

    kind = ErrorKind.EXTRACTION_FAILED


class ExtractionTimeout(ExtractionError):
    kind = ErrorKind.EXTRACTION_TIMEOUT
    retryable = True


class ExtractionTransient(ExtractionError):
    kind = ErrorKind.EXTRACTION_TRANSIENT
    retryable = True


class SchemaViolation(ExtractionError):
    kind = ErrorKind.SCHEMA_VIOLATION


class ExtractionFailed(ExtractionError):
    """Upstream rejected the request for a reason a retry cannot fix."""

    kind = ErrorKind.EXTRACTION_FAILED


# ── Pipeline ──


class InsufficientDataError(AnalysisError):
    kind = ErrorKind.INSUFFICIENT_DATA


class AggregationInvariantViolation(AnalysisError):
    kind = ErrorKind.AGGREGATION_INVARIANT_VIOLATION
