# Overview: Typed errors raised by the ledger services and surfaced to API callers.

from __future__ import annotations


class LedgerError(Exception):
    """
    Base class for every failure a ledger operation reports to its caller.

    A LedgerError always means the whole operation was rolled back; callers
    may correct their input or retry from scratch, never resume.
    """
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(LedgerError):
    """Requested decrement exceeds available stock."""
    http_status = 409


class InvariantViolationError(LedgerError):
    """Caller-supplied figures disagree with the figures computed from the lines."""
    http_status = 422


class NoChangeRequestedError(LedgerError):
    """Edit with nothing to return and nothing to add."""
    http_status = 400


class NotFoundError(LedgerError):
    """Sale, product, customer or cashbox does not exist."""
    http_status = 404


class InvalidStateError(LedgerError):
    """Operation not allowed for the entity's current status."""
    http_status = 409


class ConcurrentModificationError(LedgerError):
    """Optimistic lock conflict or lock timeout; retry the whole operation."""
    http_status = 409
