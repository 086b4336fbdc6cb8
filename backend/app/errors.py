from __future__ import annotations


class SessionError(ValueError):
    """Base class for every caller-visible failure raised by the engine."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthorizationError(SessionError):
    kind = "authorization"
    status_code = 401


class OwnershipError(SessionError):
    kind = "ownership"
    status_code = 403


class NotFoundError(SessionError):
    kind = "not_found"
    status_code = 404


class InvalidStateError(SessionError):
    kind = "invalid_state"
    status_code = 400


class InvalidInputError(SessionError):
    kind = "validation"
    status_code = 400
