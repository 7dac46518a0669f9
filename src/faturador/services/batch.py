"""Bulk NFS-e issuance from spreadsheet rows.

Rows are validated independently, then processed strictly one at a time:
resolve the customer by tax id, create a draft receivable, issue. A failure
marks only that row as ``error``; whatever the row already wrote (customer,
draft transaction, in-flight invoice) stays in the store for inspection.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import date
from typing import Any

from faturador.models.batch import BatchReport, BatchRow, RowStatus
from faturador.models.customer import Address, infer_person_type, normalize_tax_id
from faturador.models.invoice import InvoiceStatus
from faturador.services.emission import issue_invoice
from faturador.services.exceptions import PreconditionError
from faturador.services.gateway_client import Gateway
from faturador.utils.service_codes import ServiceCode, load_service_codes
from faturador.utils.store import CATEGORIES, CUSTOMERS, TRANSACTIONS, Store
from faturador.utils.validators import (
    validate_date,
    validate_monetary,
    validate_percent,
    validate_service_code,
    validate_tax_id,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, BatchRow], None]


def validate_row(row: BatchRow) -> list[str]:
    """Return the list of problems with *row*; empty means valid."""
    errors: list[str] = []
    if not str(row.descricao or "").strip():
        errors.append("Descrição obrigatória")
    try:
        row.valor = validate_monetary(str(row.valor))
    except ValueError:
        errors.append("Valor inválido")
    if not normalize_tax_id(row.tomador_cpf_cnpj):
        errors.append("CPF/CNPJ obrigatório")
    else:
        try:
            validate_tax_id(row.tomador_cpf_cnpj)
        except ValueError:
            errors.append("CPF/CNPJ inválido")
    if not str(row.tomador_razao_social or "").strip():
        errors.append("Razão Social obrigatória")
    if not str(row.codigo_servico or "").strip():
        errors.append("Código serviço obrigatório")
    else:
        try:
            validate_service_code(row.codigo_servico)
        except ValueError:
            errors.append("Código serviço inválido")
    if row.aliquota_iss not in (None, ""):
        try:
            row.aliquota_iss = validate_percent(str(row.aliquota_iss))
        except ValueError:
            errors.append("Alíquota ISS inválida")
    if row.data_vencimento:
        try:
            validate_date(str(row.data_vencimento))
        except ValueError:
            errors.append("Data de vencimento inválida")
    return errors


def default_category(store: Store, tenant_id: str) -> str | None:
    found = store.find(CATEGORIES, company_id=tenant_id)
    return found[0]["id"] if found else None


class _CustomerResolver:
    """Upsert-by-tax-id within a tenant, with a per-run memo."""

    def __init__(self, store: Store, tenant_id: str, created_by: str | None) -> None:
        self.store = store
        self.tenant_id = tenant_id
        self.created_by = created_by
        self._seen: dict[str, str] = {}

    def resolve(self, row: BatchRow) -> str:
        tax_id = normalize_tax_id(row.tomador_cpf_cnpj)
        if tax_id in self._seen:
            return self._seen[tax_id]

        existing = self.store.find_one(CUSTOMERS, company_id=self.tenant_id, tax_id=tax_id)
        if existing is not None:
            customer_id = existing["id"]
        else:
            address = Address(
                street=row.tomador_logradouro,
                number=row.tomador_numero or "S/N",
                neighborhood=row.tomador_bairro,
                city_code=row.tomador_cidade_codigo,
                zip=row.tomador_cep,
                state=row.tomador_uf,
            )
            record = self.store.insert(
                CUSTOMERS,
                {
                    "company_id": self.tenant_id,
                    "tax_id": tax_id,
                    "person_type": infer_person_type(tax_id).value,
                    "name": row.tomador_razao_social.strip(),
                    "email": row.tomador_email or None,
                    "address": address.to_dict(),
                    "created_by": self.created_by,
                },
            )
            customer_id = record["id"]
            logger.info("Customer %s created for tax id %s", customer_id, tax_id)
        self._seen[tax_id] = customer_id
        return customer_id


def _create_draft(
    store: Store,
    tenant_id: str,
    row: BatchRow,
    customer_id: str,
    category_id: str,
    created_by: str | None,
) -> dict[str, Any]:
    return store.insert(
        TRANSACTIONS,
        {
            "company_id": tenant_id,
            "type": "RECEIVABLE",
            "description": row.descricao.strip(),
            "gross_amount": row.valor,
            "due_date": row.data_vencimento or date.today().isoformat(),
            "payment_status": "PENDING",
            "category_id": category_id,
            "customer_id": customer_id,
            "service_code": row.codigo_servico,
            "iss_rate": row.aliquota_iss or None,
            "invoice_status": InvoiceStatus.PENDING.value,
            "created_by": created_by,
        },
    )


def run_batch(
    store: Store,
    gateway: Gateway,
    tenant_id: str,
    rows: Iterable[BatchRow],
    *,
    category_id: str | None = None,
    service_codes: dict[str, ServiceCode] | None = None,
    emitter_tax_id: str | None = None,
    created_by: str | None = None,
    on_progress: ProgressCallback | None = None,
) -> BatchReport:
    """Validate and issue every row, isolating failures per row.

    *on_progress* is called with (done, total, row) after each processed row
    reaches its terminal status.
    """
    report = BatchReport(rows=list(rows))

    valid: list[BatchRow] = []
    for row in report.rows:
        errors = validate_row(row)
        if errors:
            row.mark_error(", ".join(errors))
        else:
            row.status = RowStatus.PENDING
            valid.append(row)

    if not valid:
        logger.info("Batch for %s: no valid rows", tenant_id)
        return report

    table = service_codes if service_codes is not None else load_service_codes()
    category = category_id or default_category(store, tenant_id)
    customers = _CustomerResolver(store, tenant_id, created_by)

    for done, row in enumerate(valid, start=1):
        row.status = RowStatus.PROCESSING
        try:
            if category is None:
                raise PreconditionError(
                    "Nenhuma categoria cadastrada. Crie uma categoria primeiro."
                )
            row.customer_id = customers.resolve(row)
            tx = _create_draft(store, tenant_id, row, row.customer_id, category, created_by)
            row.transaction_id = tx["id"]
            issued = issue_invoice(
                store,
                gateway,
                tx["id"],
                row.codigo_servico,
                row.descricao,
                service_codes=table,
                emitter_tax_id=emitter_tax_id,
            )
        except Exception as exc:
            row.mark_error(str(exc) or type(exc).__name__)
            logger.warning("Batch row %d failed: %s", row.index, row.error_message)
        else:
            row.mark_success(issued.get("invoice_number"))
            if issued.get("invoice_status") == InvoiceStatus.PROCESSING.value:
                row.note = "Aceita pelo gateway, aguardando autorização"
        if on_progress is not None:
            on_progress(done, len(valid), row)

    logger.info(
        "Batch for %s finished: %d success, %d error",
        tenant_id,
        report.success,
        report.error,
    )
    return report
