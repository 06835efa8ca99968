"""
Error types surfaced by the service layer.

Every error carries a stable machine-readable `code` plus a human message, so
a thin HTTP/CLI layer can map them without string matching.
"""

from __future__ import annotations

from typing import Optional


class StudyCoachError(Exception):
    code = "study_coach_error"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(StudyCoachError):
    """Malformed input, e.g. a negative or non-numeric preference weight."""
    code = "validation_error"


class NotFoundError(StudyCoachError):
    """Missing OR owned by someone else. Callers can't tell which."""
    code = "not_found"


class UpstreamIOError(StudyCoachError):
    """A repository read or write failed."""
    code = "upstream_io"


class GenerationError(StudyCoachError):
    """A generator failed while strict (all-or-nothing) generation is on."""
    code = "generation_failed"
