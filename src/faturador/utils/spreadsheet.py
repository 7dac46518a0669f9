"""Turn spreadsheet exports into batch rows.

Accepts the column labels of the batch template ("Descrição do Serviço",
"Valor (R$)", ...) as well as the snake-case field names. The template's
instruction row (cells reading "(Obrigatório)"/"(Opcional)") is skipped.
"""

from __future__ import annotations

import csv
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from pathlib import Path
from typing import Any

import openpyxl
import yaml
from openpyxl.utils import get_column_letter

from faturador.models.batch import BatchRow

TEMPLATE_COLUMNS: list[tuple[str, str, bool]] = [
    ("descricao", "Descrição do Serviço", True),
    ("valor", "Valor (R$)", True),
    ("tomador_cpf_cnpj", "CPF/CNPJ Tomador", True),
    ("tomador_razao_social", "Razão Social/Nome", True),
    ("tomador_email", "Email Tomador", False),
    ("tomador_logradouro", "Logradouro", True),
    ("tomador_numero", "Número", True),
    ("tomador_bairro", "Bairro", True),
    ("tomador_cidade_codigo", "Código IBGE Cidade", True),
    ("tomador_cep", "CEP", True),
    ("tomador_uf", "UF", True),
    ("codigo_servico", "Código Serviço", True),
    ("aliquota_iss", "Alíquota ISS (%)", False),
    ("data_vencimento", "Data Vencimento", False),
]

_LABEL_TO_FIELD = {label: key for key, label, _ in TEMPLATE_COLUMNS}
_FIELDS = {key for key, _, _ in TEMPLATE_COLUMNS}


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _is_instruction_row(raw: Mapping[str, Any]) -> bool:
    first = next(iter(raw.values()), None)
    return isinstance(first, str) and "Obrigatório" in first


def _normalize_keys(raw: Mapping[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, value in raw.items():
        if key is None:
            continue
        name = str(key).strip()
        field = _LABEL_TO_FIELD.get(name, name if name in _FIELDS else None)
        if field is not None:
            out[field] = _cell(value)
    return out


def row_from_mapping(index: int, raw: Mapping[str, Any]) -> BatchRow:
    d = _normalize_keys(raw)
    return BatchRow(
        index=index,
        descricao=d.get("descricao", ""),
        valor=d.get("valor", "") or "0",
        tomador_cpf_cnpj=d.get("tomador_cpf_cnpj", ""),
        tomador_razao_social=d.get("tomador_razao_social", ""),
        codigo_servico=d.get("codigo_servico", ""),
        tomador_email=d.get("tomador_email") or None,
        tomador_logradouro=d.get("tomador_logradouro", ""),
        tomador_numero=d.get("tomador_numero") or "S/N",
        tomador_bairro=d.get("tomador_bairro", ""),
        tomador_cidade_codigo=d.get("tomador_cidade_codigo", ""),
        tomador_cep=d.get("tomador_cep", ""),
        tomador_uf=d.get("tomador_uf", ""),
        aliquota_iss=d.get("aliquota_iss") or None,
        data_vencimento=d.get("data_vencimento") or None,
    )


def rows_from_mappings(mappings: Iterable[Mapping[str, Any]]) -> list[BatchRow]:
    """Build batch rows from parsed records, numbering them from 1."""
    rows: list[BatchRow] = []
    for raw in mappings:
        if _is_instruction_row(raw):
            continue
        rows.append(row_from_mapping(len(rows) + 1, raw))
    return rows


def _header_delimiter(header: str) -> str:
    """Pick the delimiter that splits the header line into the most columns."""
    return max(",;\t", key=header.count) if header else ","


def _read_csv(path: Path) -> list[dict[str, Any]]:
    with open(path, encoding="utf-8-sig", newline="") as f:
        sample = f.read(2048)
        f.seek(0)
        try:
            delimiter = csv.Sniffer().sniff(sample, delimiters=",;\t").delimiter
        except csv.Error:
            delimiter = _header_delimiter(sample.splitlines()[0] if sample else "")
        return list(csv.DictReader(f, delimiter=delimiter))


def _xlsx_cell(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _read_xlsx(path: Path) -> list[dict[str, Any]]:
    """Rows of the first sheet as dicts keyed by the header row; blank rows are skipped."""
    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        rows = wb.worksheets[0].iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        keys = [_cell(h) for h in header]
        records: list[dict[str, Any]] = []
        for values in rows:
            if all(v is None or str(v).strip() == "" for v in values):
                continue
            records.append(
                {key: _xlsx_cell(v) for key, v in zip(keys, values, strict=False) if key}
            )
        return records
    finally:
        wb.close()


def load_rows(path: str | Path) -> list[BatchRow]:
    """Load batch rows from a .xlsx, .csv or .yaml/.yml file."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Arquivo nao encontrado: {path}")
    suffix = p.suffix.lower()
    if suffix == ".xlsx":
        return rows_from_mappings(_read_xlsx(p))
    if suffix == ".csv":
        return rows_from_mappings(_read_csv(p))
    if suffix in (".yaml", ".yml"):
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or []
        if not isinstance(data, list):
            raise ValueError("Arquivo YAML deve conter uma lista de linhas")
        return rows_from_mappings(data)
    raise ValueError(f"Formato de arquivo nao suportado: {p.suffix}")


_TEMPLATE_EXAMPLE = {
    "descricao": "Consultoria em TI",
    "valor": "1500.00",
    "tomador_cpf_cnpj": "12.345.678/0001-90",
    "tomador_razao_social": "Empresa Exemplo Ltda",
    "tomador_email": "contato@empresa.com",
    "tomador_logradouro": "Av. Paulista",
    "tomador_numero": "1000",
    "tomador_bairro": "Bela Vista",
    "tomador_cidade_codigo": "3550308",
    "tomador_cep": "01310-100",
    "tomador_uf": "SP",
    "codigo_servico": "1.01",
    "aliquota_iss": "2",
    "data_vencimento": "2025-12-31",
}


def _template_rows() -> list[list[str]]:
    return [
        [label for _, label, _ in TEMPLATE_COLUMNS],
        [_TEMPLATE_EXAMPLE[key] for key, _, _ in TEMPLATE_COLUMNS],
        ["(Obrigatório)" if required else "(Opcional)" for _, _, required in TEMPLATE_COLUMNS],
    ]


def write_template(path: str | Path) -> Path:
    """Write the batch template (header, one example row, one instruction row).

    A ``.xlsx`` path gets a workbook with a "Notas Fiscais" sheet; anything
    else is written as CSV.
    """
    p = Path(path)
    if p.suffix.lower() == ".xlsx":
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "Notas Fiscais"
        for row in _template_rows():
            ws.append(row)
        for i, (_, label, _) in enumerate(TEMPLATE_COLUMNS, start=1):
            ws.column_dimensions[get_column_letter(i)].width = max(15, len(label) + 4)
        wb.save(p)
        return p
    with open(p, "w", encoding="utf-8", newline="") as f:
        csv.writer(f).writerows(_template_rows())
    return p
