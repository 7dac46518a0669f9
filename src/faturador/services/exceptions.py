from __future__ import annotations


class PreconditionError(Exception):
    """Request rejected locally before any gateway call was made."""


class InvalidTransitionError(PreconditionError):
    """The (state, event) pair is not part of the invoice lifecycle."""


class ConcurrentUpdateError(PreconditionError):
    """A conditional status update found the record in a different state."""


class NotFoundError(KeyError):
    """Unknown record id."""


class GatewayRejectError(Exception):
    """The gateway answered but refused the document (business-rule failure)."""

    def __init__(self, message: str, response: dict | None = None) -> None:
        super().__init__(message)
        self.response = response or {}


class GatewayError(RuntimeError):
    """Network, timeout or 5xx failure talking to the gateway. No verdict is known."""
