from __future__ import annotations

from decimal import Decimal

from faturador.models.customer import normalize_tax_id


def format_brl(value: str | Decimal) -> str:
    """Format a numeric string as R$ X.XXX,XX."""
    d = Decimal(str(value))
    formatted = f"{d:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"R$ {formatted}"


def format_tax_id(value: str) -> str:
    """Format digits as CPF (000.000.000-00) or CNPJ (00.000.000/0000-00).

    Anything that is neither length is returned as given.
    """
    d = normalize_tax_id(value)
    if len(d) == 11:
        return f"{d[:3]}.{d[3:6]}.{d[6:9]}-{d[9:]}"
    if len(d) == 14:
        return f"{d[:2]}.{d[2:5]}.{d[5:8]}/{d[8:12]}-{d[12:]}"
    return value
