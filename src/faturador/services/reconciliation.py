from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from faturador.models.invoice import Environment, InvoiceEvent, InvoiceStatus, parse_status
from faturador.services.environment import credentials_for
from faturador.services.exceptions import PreconditionError
from faturador.services.gateway_client import Gateway, GatewayState
from faturador.services.transitions import apply_transition, get_transaction
from faturador.utils.store import TRANSACTIONS, Store

logger = logging.getLogger(__name__)


def refresh_status(store: Store, gateway: Gateway, transaction_id: str) -> dict[str, Any]:
    """Ask the gateway for the authoritative state of an in-flight invoice.

    Only ``processing`` invoices are queried; any other state is returned
    untouched, so repeated calls are no-ops. The query always uses the
    environment stamped on the invoice.
    """
    tx = get_transaction(store, transaction_id)
    if parse_status(tx.get("invoice_status")) is not InvoiceStatus.PROCESSING:
        return tx

    integration_id = tx.get("invoice_integration_id") or tx.get("invoice_attempt_id")
    if not integration_id:
        raise PreconditionError("Nota em processamento sem identificador de integracao")
    env = Environment.parse(tx.get("invoice_environment"))
    token = credentials_for(store, tx["company_id"])

    result = gateway.status(integration_id, env, token)

    if result.state is GatewayState.ISSUED and result.invoice_number:
        logger.info("NFS-e %s confirmed for %s", result.invoice_number, transaction_id)
        return apply_transition(
            store,
            tx,
            InvoiceEvent.CONFIRM,
            {
                "invoice_number": result.invoice_number,
                "invoice_key": result.invoice_key or tx.get("invoice_key"),
                "invoice_error": None,
            },
            invoice_number=result.invoice_number,
            message=f"NFS-e {result.invoice_number} confirmada na consulta",
        )
    if result.state is GatewayState.REJECTED:
        reason = result.reason or "Rejeitada pelo gateway"
        logger.info("NFS-e for %s rejected on reconciliation: %s", transaction_id, reason)
        return apply_transition(
            store, tx, InvoiceEvent.REJECT, {"invoice_error": reason}, reason=reason
        )
    if result.state is GatewayState.ISSUED:
        logger.warning("Gateway reports %s issued without a number; still waiting", transaction_id)
    elif result.state is GatewayState.CANCELLED:
        logger.warning(
            "Gateway reports %s cancelled while local state is processing", transaction_id
        )
    return tx


@dataclass
class ReconcileOutcome:
    transaction_id: str
    status: str
    error: str | None = None


def refresh_in_flight(store: Store, gateway: Gateway, tenant_id: str) -> list[ReconcileOutcome]:
    """Refresh every ``processing`` invoice of a tenant, one failure per entry."""
    outcomes: list[ReconcileOutcome] = []
    in_flight = store.find(
        TRANSACTIONS, company_id=tenant_id, invoice_status=InvoiceStatus.PROCESSING.value
    )
    for tx in in_flight:
        try:
            updated = refresh_status(store, gateway, tx["id"])
        except Exception as exc:
            logger.warning("Reconciliation of %s failed: %s", tx["id"], exc)
            outcomes.append(ReconcileOutcome(tx["id"], tx["invoice_status"], str(exc)))
        else:
            outcomes.append(ReconcileOutcome(tx["id"], updated["invoice_status"]))
    return outcomes


def release_in_flight(store: Store, transaction_id: str, reason: str) -> dict[str, Any]:
    """Operator decision: give up on a stuck ``processing`` invoice.

    Moves it to ``rejected`` so a fresh issuance cycle may start. Use only
    after checking with the gateway that the attempt was not authorised.
    """
    tx = get_transaction(store, transaction_id)
    if parse_status(tx.get("invoice_status")) is not InvoiceStatus.PROCESSING:
        raise PreconditionError("Apenas notas em processamento podem ser liberadas")
    text = (reason or "").strip()
    if not text:
        raise PreconditionError("Informe o motivo da liberacao")
    message = f"Liberada pelo operador: {text}"
    logger.info("In-flight invoice %s released: %s", transaction_id, text)
    return apply_transition(
        store, tx, InvoiceEvent.REJECT, {"invoice_error": message}, reason=message
    )
