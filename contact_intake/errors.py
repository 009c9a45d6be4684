"""
Client-facing error taxonomy shared by the contact services and endpoints.

Services raise these; the contacts blueprint turns them into JSON responses
carrying the matching HTTP status. They are never retried automatically.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Sequence


class ContactIntakeError(Exception):
    """Base exception for caller-correctable failures."""

    status: HTTPStatus = HTTPStatus.BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class BadRequest(ContactIntakeError):
    status = HTTPStatus.BAD_REQUEST


class NotFound(ContactIntakeError):
    status = HTTPStatus.NOT_FOUND


class Conflict(ContactIntakeError):
    status = HTTPStatus.CONFLICT


class PayloadTooLarge(ContactIntakeError):
    status = HTTPStatus.REQUEST_ENTITY_TOO_LARGE


class ValidationFailed(ContactIntakeError):
    """Raised when submitted group field values violate the group schema."""

    status = HTTPStatus.UNPROCESSABLE_ENTITY

    def __init__(self, message: str, *, errors: Sequence[dict[str, Any]] = ()) -> None:
        super().__init__(message)
        self.errors = list(errors)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = self.errors
        return payload
