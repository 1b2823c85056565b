"""Typed errors raised by the special request lifecycle.

Routes never build error payloads for these by hand: the app factory
registers one handler for ``CommissionError`` that renders the standard
error envelope with the error's ``code`` and ``status``.
"""


class CommissionError(Exception):
    code = "COMMISSION_ERROR"
    status = 400

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(CommissionError):
    """Structural or invariant violation, raised before anything is committed."""
    code = "VALIDATION_ERROR"
    status = 422


class QuotaExceeded(CommissionError):
    """The revision quota of a request is already used up."""
    code = "QUOTA_EXCEEDED"
    status = 409


class NotFound(CommissionError):
    code = "NOT_FOUND"
    status = 404


class PersistenceFailure(CommissionError):
    """The database could not complete the operation. Never retried here."""
    code = "PERSISTENCE_FAILURE"
    status = 503
