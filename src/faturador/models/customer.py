from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum


class PersonType(str, Enum):
    INDIVIDUAL = "PF"
    ORGANIZATION = "PJ"


def normalize_tax_id(value: str | int | None) -> str:
    """Strip punctuation from a CPF/CNPJ, keeping digits only."""
    return re.sub(r"\D", "", str(value or ""))


def infer_person_type(tax_id: str) -> PersonType:
    """Up to 11 digits is a CPF (individual); anything longer is a CNPJ."""
    if len(normalize_tax_id(tax_id)) <= 11:
        return PersonType.INDIVIDUAL
    return PersonType.ORGANIZATION


@dataclass(frozen=True)
class Address:
    street: str = ""
    number: str = "S/N"
    neighborhood: str = ""
    city_code: str = ""
    zip: str = ""
    state: str = ""

    @classmethod
    def from_dict(cls, d: dict | None) -> Address:
        d = d or {}
        return cls(
            street=d.get("street", ""),
            number=str(d.get("number") or "S/N"),
            neighborhood=d.get("neighborhood", ""),
            city_code=str(d.get("city_code", "")),
            zip=str(d.get("zip", "")),
            state=d.get("state", ""),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "street": self.street,
            "number": self.number,
            "neighborhood": self.neighborhood,
            "city_code": self.city_code,
            "zip": self.zip,
            "state": self.state,
        }


@dataclass(frozen=True)
class Customer:
    """Service taker (tomador), unique by tax id within a tenant."""

    id: str
    company_id: str
    tax_id: str
    person_type: PersonType
    name: str
    email: str | None = None
    address: Address = field(default_factory=Address)

    @classmethod
    def from_dict(cls, d: dict) -> Customer:
        tax_id = normalize_tax_id(d["tax_id"])
        person_type = d.get("person_type")
        return cls(
            id=d["id"],
            company_id=d["company_id"],
            tax_id=tax_id,
            person_type=PersonType(person_type) if person_type else infer_person_type(tax_id),
            name=d.get("name", ""),
            email=d.get("email"),
            address=Address.from_dict(d.get("address")),
        )
