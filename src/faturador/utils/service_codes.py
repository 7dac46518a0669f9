"""LC 116/2003 service-code reference table (read-only).

The bundled table lives in ``templates/service_codes.yaml``; a tenant may add
or override entries through the ``service_codes`` list in ``tenant.yaml``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from importlib.resources import files

import yaml


@dataclass(frozen=True)
class ServiceCode:
    code: str
    cnae: str
    description: str
    category: str
    aliquota: Decimal

    @classmethod
    def from_dict(cls, d: dict) -> ServiceCode:
        return cls(
            code=normalize_service_code(d["code"]),
            cnae=str(d.get("cnae", "")),
            description=d.get("description", ""),
            category=d.get("category", ""),
            aliquota=Decimal(str(d.get("aliquota", "0"))),
        )


def normalize_service_code(value: str) -> str:
    """Normalize an LC 116 item: '01.01' and ' 1.01 ' both become '1.01'."""
    text = str(value).strip()
    head, sep, tail = text.partition(".")
    if head.isdigit():
        head = str(int(head))
    return f"{head}{sep}{tail}"


def _load_bundled() -> list[dict]:
    src = files("faturador") / "templates" / "service_codes.yaml"
    return yaml.safe_load(src.read_text(encoding="utf-8")) or []


def load_service_codes(overrides: list[dict] | None = None) -> dict[str, ServiceCode]:
    """Return the reference table keyed by normalized code.

    When the same code appears more than once, the first entry wins; tenant
    overrides replace bundled entries.
    """
    table: dict[str, ServiceCode] = {}
    for entry in _load_bundled():
        sc = ServiceCode.from_dict(entry)
        table.setdefault(sc.code, sc)
    for entry in overrides or []:
        sc = ServiceCode.from_dict(entry)
        table[sc.code] = sc
    return table


def find_service_code(
    code: str, table: dict[str, ServiceCode] | None = None
) -> ServiceCode | None:
    if table is None:
        table = load_service_codes()
    return table.get(normalize_service_code(code))


def search_service_codes(
    query: str, table: dict[str, ServiceCode] | None = None
) -> list[ServiceCode]:
    """Match code, description, CNAE or category (case-insensitive)."""
    if table is None:
        table = load_service_codes()
    q = query.lower().strip()
    if not q:
        return list(table.values())
    return [
        sc
        for sc in table.values()
        if q in sc.code.lower()
        or q in sc.description.lower()
        or q in sc.cnae.lower()
        or q in sc.category.lower()
    ]
