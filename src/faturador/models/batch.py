from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RowStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class BatchRow:
    """One spreadsheet line. Lives only for the duration of a batch run."""

    index: int
    descricao: str
    valor: str
    tomador_cpf_cnpj: str
    tomador_razao_social: str
    codigo_servico: str
    tomador_email: str | None = None
    tomador_logradouro: str = ""
    tomador_numero: str = "S/N"
    tomador_bairro: str = ""
    tomador_cidade_codigo: str = ""
    tomador_cep: str = ""
    tomador_uf: str = ""
    aliquota_iss: str | None = None
    data_vencimento: str | None = None

    status: RowStatus = RowStatus.PENDING
    error_message: str | None = None
    invoice_number: str | None = None
    note: str | None = None
    transaction_id: str | None = None
    customer_id: str | None = None

    def mark_error(self, message: str) -> None:
        self.status = RowStatus.ERROR
        self.error_message = message

    def mark_success(self, invoice_number: str | None) -> None:
        self.status = RowStatus.SUCCESS
        self.invoice_number = invoice_number
        self.error_message = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "descricao": self.descricao,
            "tomador_cpf_cnpj": self.tomador_cpf_cnpj,
            "status": self.status.value,
            "error_message": self.error_message,
            "note": self.note,
            "invoice_number": self.invoice_number,
            "transaction_id": self.transaction_id,
            "customer_id": self.customer_id,
        }


@dataclass
class BatchReport:
    rows: list[BatchRow] = field(default_factory=list)

    @property
    def success(self) -> int:
        return sum(1 for r in self.rows if r.status is RowStatus.SUCCESS)

    @property
    def error(self) -> int:
        return sum(1 for r in self.rows if r.status is RowStatus.ERROR)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "rows": [r.as_dict() for r in self.rows],
        }
