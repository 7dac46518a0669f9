from __future__ import annotations

import logging
from typing import Any

from faturador.models.invoice import (
    Environment,
    InvoiceEvent,
    InvoiceStatus,
    check_justification,
    parse_status,
)
from faturador.services.environment import credentials_for
from faturador.services.exceptions import ConcurrentUpdateError, PreconditionError
from faturador.services.gateway_client import CancelState, CancelStatusResult, Gateway
from faturador.services.transitions import apply_transition, get_transaction
from faturador.utils.store import TRANSACTIONS, Store, now_iso

logger = logging.getLogger(__name__)

_GATEWAY_CANCEL_MESSAGE = "Cancelamento confirmado pelo gateway"


def cancel_invoice(
    store: Store, gateway: Gateway, transaction_id: str, justification: str
) -> dict[str, Any]:
    """Void an issued NFS-e.

    Justification and status are checked before any gateway call. Local state
    changes only after the gateway confirms; if the gateway call fails the
    invoice stays ``issued`` and the cancellation can be retried. The final
    write is conditional on the status still being ``issued``.
    """
    reason = check_justification(justification)
    tx = get_transaction(store, transaction_id)
    status = parse_status(tx.get("invoice_status"))
    if status is not InvoiceStatus.ISSUED:
        raise PreconditionError(
            f"Apenas notas emitidas podem ser canceladas (status '{status.value}')"
        )

    integration_id = tx.get("invoice_integration_id") or tx.get("invoice_attempt_id")
    env = Environment.parse(tx.get("invoice_environment"))
    token = credentials_for(store, tx["company_id"])

    gateway.cancel(integration_id, reason, env, token)

    updated = apply_transition(
        store,
        tx,
        InvoiceEvent.CANCEL,
        {"invoice_cancel_reason": reason, "invoice_cancelled_at": now_iso()},
        reason=reason,
        message=f"NFS-e {tx.get('invoice_number')} cancelada: {reason}",
    )
    logger.info("NFS-e %s cancelled (%s)", tx.get("invoice_number"), transaction_id)
    return updated


def _record(store: Store, tx: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    """Write non-lifecycle fields, only if the status is still the one read."""
    updated = store.compare_and_set(
        TRANSACTIONS, tx["id"], "invoice_status", tx.get("invoice_status"), changes
    )
    if updated is None:
        raise ConcurrentUpdateError("Status da nota mudou durante a consulta de cancelamento")
    return updated


def check_cancellation(
    store: Store, gateway: Gateway, transaction_id: str
) -> tuple[dict[str, Any], CancelStatusResult]:
    """Ask the gateway how the cancellation request of an invoice stands.

    Covers the case where ``cancel_invoice`` got no verdict and the invoice
    was left ``issued``. An approved request moves it to ``cancelled`` through
    the conditional write and stores the gateway protocol; on an invoice that
    is already ``cancelled`` only the protocol is filled in. Other states
    leave the lifecycle untouched.
    """
    tx = get_transaction(store, transaction_id)
    integration_id = tx.get("invoice_integration_id")
    if not integration_id:
        raise PreconditionError("ID de integracao nao encontrado na nota")
    status = parse_status(tx.get("invoice_status"))
    env = Environment.parse(tx.get("invoice_environment"))
    token = credentials_for(store, tx["company_id"])

    result = gateway.cancel_status(integration_id, env, token)

    if result.state is CancelState.APPROVED:
        details = {
            "invoice_cancel_protocol": result.protocol,
            "invoice_cancelled_at": (
                result.processed_at or tx.get("invoice_cancelled_at") or now_iso()
            ),
        }
        if status is InvoiceStatus.ISSUED:
            reason = tx.get("invoice_cancel_reason") or _GATEWAY_CANCEL_MESSAGE
            tx = apply_transition(
                store,
                tx,
                InvoiceEvent.CANCEL,
                {**details, "invoice_cancel_reason": reason, "invoice_cancel_error": None},
                reason=reason,
                message=f"NFS-e {tx.get('invoice_number')} cancelada (protocolo {result.protocol})",
            )
            logger.info("Cancellation of %s confirmed by the gateway", transaction_id)
        elif status is InvoiceStatus.CANCELLED:
            if result.protocol and tx.get("invoice_cancel_protocol") != result.protocol:
                tx = _record(store, tx, details)
        else:
            logger.warning(
                "Gateway approved cancellation of %s but local status is '%s'",
                transaction_id,
                status.value,
            )
    elif result.state is CancelState.REJECTED and status is InvoiceStatus.ISSUED:
        logger.info("Cancellation of %s refused: %s", transaction_id, result.reason)
        tx = _record(store, tx, {"invoice_cancel_error": result.reason})
    return tx, result
