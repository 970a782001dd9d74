"""Error taxonomy shared by the service layer and the HTTP surface."""

from __future__ import annotations


class DocShareError(Exception):
    """Base class; ``status_code`` is what the API layer answers with."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DocShareError):
    """Malformed or out-of-range input. Never retried."""

    status_code = 400


class NotFoundError(DocShareError):
    """Unknown id, or an id the caller does not own."""

    status_code = 404


class ExpiredError(DocShareError):
    """The share existed but its expiry has passed."""

    status_code = 410


class UnauthorizedError(DocShareError):
    """Missing or wrong gate password, or an invalid/revoked credential."""

    status_code = 401


class StorageError(DocShareError):
    """The database adapter failed."""

    status_code = 500
