from __future__ import annotations

from faturador.models.invoice import Environment, InvoiceStatus, parse_status
from faturador.services.environment import credentials_for
from faturador.services.exceptions import PreconditionError
from faturador.services.gateway_client import Gateway
from faturador.services.transitions import get_transaction
from faturador.utils.store import Store
from faturador.utils.validators import validate_artifact_format


def fetch_artifact_url(
    store: Store, gateway: Gateway, transaction_id: str, fmt: str = "pdf"
) -> str:
    """Return a transient download URL for the PDF or XML of an issued NFS-e.

    The URL is gateway-signed and short-lived; it is not persisted.
    """
    fmt = validate_artifact_format(fmt)
    tx = get_transaction(store, transaction_id)
    status = parse_status(tx.get("invoice_status"))
    if status is not InvoiceStatus.ISSUED or not tx.get("invoice_number"):
        raise PreconditionError(
            f"Nota fiscal nao disponivel para download. Status: {status.value}"
        )
    integration_id = tx.get("invoice_integration_id") or tx.get("invoice_attempt_id")
    env = Environment.parse(tx.get("invoice_environment"))
    return gateway.download(integration_id, fmt, env, credentials_for(store, tx["company_id"]))
