from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation

from faturador.models.customer import normalize_tax_id

_FORMATS = frozenset({"pdf", "xml"})


def validate_monetary(value: str) -> str:
    """Validate and normalize a monetary value string.

    Returns the value with 2 decimal places.
    Raises ValueError for invalid or non-positive values.
    """
    try:
        d = Decimal(str(value).strip())
        if not d.is_finite():
            raise InvalidOperation
        if d <= 0:
            raise ValueError(f"Valor deve ser positivo: '{value}'")
    except InvalidOperation:
        raise ValueError(f"Valor numerico invalido: '{value}'") from None
    return f"{d:.2f}"


def validate_date(value: str) -> str:
    """Validate an ISO date string (YYYY-MM-DD).

    Returns the value unchanged if valid.
    Raises ValueError for invalid dates.
    """
    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Data invalida: '{value}'. Use YYYY-MM-DD.") from None
    return value


def validate_percent(value: str) -> str:
    """Validate and normalize a percentage value (0.00-100.00)."""
    try:
        d = Decimal(str(value).strip())
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValueError(f"Percentual invalido: '{value}'") from None
    if d < 0 or d > 100:
        raise ValueError("Percentual deve estar entre 0.00 e 100.00")
    return f"{d:.2f}"


def validate_tax_id(value: str) -> str:
    """Validate a CPF (11 digits) or CNPJ (14 digits); punctuation is ignored.

    Returns the digits only.
    """
    digits = normalize_tax_id(value)
    if len(digits) not in (11, 14):
        raise ValueError(f"CPF/CNPJ invalido: '{value}'")
    return digits


def validate_service_code(value: str) -> str:
    """Validate an LC 116/2003 item code such as '1.01' or '17.02'."""
    if not re.fullmatch(r"\d{1,2}\.\d{2}", str(value).strip()):
        raise ValueError(f"Codigo de servico invalido: '{value}'")
    return str(value).strip()


def validate_artifact_format(value: str) -> str:
    fmt = str(value).strip().lower()
    if fmt not in _FORMATS:
        raise ValueError("Formato deve ser 'pdf' ou 'xml'")
    return fmt
