"""Invoice lifecycle: the closed set of states and the legal transitions between them."""

from __future__ import annotations

from enum import Enum

from faturador.services.exceptions import InvalidTransitionError, PreconditionError

MIN_JUSTIFICATION_LENGTH = 15


class Environment(str, Enum):
    SANDBOX = "SANDBOX"
    PRODUCTION = "PRODUCTION"

    @classmethod
    def parse(cls, value: str | None) -> Environment:
        """Parse an environment name; missing values default to SANDBOX."""
        if not value:
            return cls.SANDBOX
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Ambiente invalido: '{value}'. Use SANDBOX ou PRODUCTION.") from None


class InvoiceStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    ISSUED = "issued"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REPLACED = "replaced"

    @property
    def in_flight(self) -> bool:
        return self is InvoiceStatus.PROCESSING

    @property
    def issuable(self) -> bool:
        """True when a fresh issuance cycle may start from this state."""
        return self in _ISSUABLE


class InvoiceEvent(str, Enum):
    QUEUE = "queue"
    SUBMIT = "submit"
    CONFIRM = "confirm"
    REJECT = "reject"
    CANCEL = "cancel"
    REPLACE = "replace"


_ISSUABLE = frozenset({InvoiceStatus.NONE, InvoiceStatus.PENDING, InvoiceStatus.REJECTED})

_TRANSITIONS: dict[tuple[InvoiceStatus, InvoiceEvent], InvoiceStatus] = {
    (InvoiceStatus.NONE, InvoiceEvent.QUEUE): InvoiceStatus.PENDING,
    (InvoiceStatus.REJECTED, InvoiceEvent.QUEUE): InvoiceStatus.PENDING,
    (InvoiceStatus.NONE, InvoiceEvent.SUBMIT): InvoiceStatus.PROCESSING,
    (InvoiceStatus.PENDING, InvoiceEvent.SUBMIT): InvoiceStatus.PROCESSING,
    (InvoiceStatus.REJECTED, InvoiceEvent.SUBMIT): InvoiceStatus.PROCESSING,
    (InvoiceStatus.PROCESSING, InvoiceEvent.CONFIRM): InvoiceStatus.ISSUED,
    (InvoiceStatus.PROCESSING, InvoiceEvent.REJECT): InvoiceStatus.REJECTED,
    (InvoiceStatus.ISSUED, InvoiceEvent.CANCEL): InvoiceStatus.CANCELLED,
    (InvoiceStatus.ISSUED, InvoiceEvent.REPLACE): InvoiceStatus.REPLACED,
}


def parse_status(value: str | None) -> InvoiceStatus:
    """Read a persisted status string. Empty means no invoice yet."""
    if not value:
        return InvoiceStatus.NONE
    try:
        return InvoiceStatus(value)
    except ValueError:
        raise ValueError(f"Status de nota desconhecido: '{value}'") from None


def allowed_events(current: InvoiceStatus) -> set[InvoiceEvent]:
    return {event for (state, event) in _TRANSITIONS if state is current}


def transition(
    current: InvoiceStatus,
    event: InvoiceEvent,
    *,
    invoice_number: str | None = None,
    reason: str | None = None,
) -> InvoiceStatus:
    """Return the state reached by applying *event* to *current*.

    Guards:
    - CONFIRM needs a non-empty invoice number.
    - REJECT needs a non-empty rejection reason.
    - CANCEL and REPLACE need a justification of at least 15 characters.

    Raises InvalidTransitionError for any pair outside the lifecycle or a
    failed guard.
    """
    target = _TRANSITIONS.get((current, event))
    if target is None:
        allowed = ", ".join(sorted(e.value for e in allowed_events(current))) or "nenhum"
        raise InvalidTransitionError(
            f"Transicao invalida: {event.value} a partir de '{current.value}' "
            f"(permitidos: {allowed})"
        )
    if event is InvoiceEvent.CONFIRM and not (invoice_number and invoice_number.strip()):
        raise InvalidTransitionError("Nota emitida exige numero da NFS-e")
    if event is InvoiceEvent.REJECT and not (reason and reason.strip()):
        raise InvalidTransitionError("Rejeicao exige motivo informado pelo gateway")
    if event in (InvoiceEvent.CANCEL, InvoiceEvent.REPLACE):
        check_justification(reason)
    return target


def check_justification(reason: str | None) -> str:
    """Fail unless *reason* has at least MIN_JUSTIFICATION_LENGTH characters (after strip)."""
    text = (reason or "").strip()
    if len(text) < MIN_JUSTIFICATION_LENGTH:
        raise PreconditionError(
            f"Motivo deve ter pelo menos {MIN_JUSTIFICATION_LENGTH} caracteres"
        )
    return text
