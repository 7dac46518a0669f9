from __future__ import annotations

from typing import Any

from faturador.models.invoice import InvoiceEvent, parse_status, transition
from faturador.services.exceptions import ConcurrentUpdateError, NotFoundError
from faturador.utils.store import TRANSACTIONS, Store, now_iso


def get_transaction(store: Store, transaction_id: str) -> dict[str, Any]:
    tx = store.get(TRANSACTIONS, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transacao nao encontrada: {transaction_id}")
    return tx


def apply_transition(
    store: Store,
    tx: dict[str, Any],
    event: InvoiceEvent,
    changes: dict[str, Any] | None = None,
    *,
    invoice_number: str | None = None,
    reason: str | None = None,
    message: str | None = None,
) -> dict[str, Any]:
    """Validate *event* against the state machine and persist it conditionally.

    The write only lands if the stored status still equals the one in *tx*;
    otherwise ConcurrentUpdateError is raised and nothing changes.
    """
    current = parse_status(tx.get("invoice_status"))
    target = transition(current, event, invoice_number=invoice_number, reason=reason)

    history = list(tx.get("invoice_history") or [])
    history.append(
        {
            "at": now_iso(),
            "event": event.value,
            "from": current.value,
            "to": target.value,
            "message": message or reason,
        }
    )
    updated = store.compare_and_set(
        TRANSACTIONS,
        tx["id"],
        "invoice_status",
        tx.get("invoice_status"),
        {**(changes or {}), "invoice_status": target.value, "invoice_history": history},
    )
    if updated is None:
        raise ConcurrentUpdateError(
            f"Status da nota mudou durante a operacao (esperado '{current.value}')"
        )
    return updated
