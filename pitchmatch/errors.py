"""Expected, local failure conditions of the matching engine.

Every error carries the HTTP-equivalent ``status_code`` the API layer maps it
to. None of them is retried inside the engine.
"""
from __future__ import annotations


class MatchingError(Exception):
    """Base class for matching engine errors."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class IncompleteRecord(MatchingError):
    """A startup or investor record lacks its minimum identity fields."""
    status_code = 422

    def __init__(self, kind: str, record_id: str | None, missing: list[str]):
        label = f"{kind} {record_id}" if record_id else kind
        super().__init__(f"{label} is missing required fields: {', '.join(missing)}")
        self.kind = kind
        self.record_id = record_id
        self.missing = missing


class InsufficientData(MatchingError):
    """No compatibility dimension could be scored."""
    status_code = 422


class RecordNotFound(MatchingError):
    """Read-only lookup found no fresh match record."""
    status_code = 404


class NotFound(MatchingError):
    """A match record, startup or investor does not exist."""
    status_code = 404


class InvalidTransition(MatchingError):
    """A status change is not allowed from the record's current status."""
    status_code = 409
