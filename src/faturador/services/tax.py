"""ISS-based net amount and withheld federal taxes.

Pure functions; inputs are assumed numeric and finite (callers validate).
Amounts are rounded half-up to centavos; the net amount is derived from the
rounded tax so that ``tax_amount + net_amount == gross`` holds exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")

WITHHELD_TAXES = ("pis", "cofins", "csll", "irpj", "inss")


@dataclass(frozen=True)
class TaxResult:
    tax_amount: Decimal
    net_amount: Decimal


@dataclass(frozen=True)
class TaxBreakdown:
    gross_amount: Decimal
    iss_rate: Decimal
    iss_amount: Decimal
    net_amount: Decimal
    withheld: dict[str, Decimal] = field(default_factory=dict)

    @property
    def total_withheld(self) -> Decimal:
        return sum(self.withheld.values(), Decimal("0.00"))

    def to_dict(self) -> dict[str, str]:
        out = {
            "gross_amount": f"{self.gross_amount:.2f}",
            "iss_rate": f"{self.iss_rate:.2f}",
            "iss_amount": f"{self.iss_amount:.2f}",
            "net_amount": f"{self.net_amount:.2f}",
            "total_withheld": f"{self.total_withheld:.2f}",
        }
        for name, amount in self.withheld.items():
            out[f"{name}_amount"] = f"{amount:.2f}"
        return out


def _dec(value: Decimal | str | int | float) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def calculate(gross: Decimal | str, rate: Decimal | str) -> TaxResult:
    """Return ``gross * rate / 100`` and what remains after it."""
    g = _dec(gross)
    tax = (g * _dec(rate) / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    return TaxResult(tax_amount=tax, net_amount=g.quantize(CENT, rounding=ROUND_HALF_UP) - tax)


def breakdown(
    gross: Decimal | str,
    iss_rate: Decimal | str,
    withheld_rates: dict[str, Decimal | str] | None = None,
) -> TaxBreakdown:
    """Full breakdown for display and persistence.

    Withheld taxes are computed like ISS and reported separately; they do not
    change the ISS-derived net amount.
    """
    iss = calculate(gross, iss_rate)
    withheld: dict[str, Decimal] = {}
    for name in WITHHELD_TAXES:
        rate = (withheld_rates or {}).get(name)
        if rate is None or _dec(rate) == 0:
            continue
        withheld[name] = calculate(gross, rate).tax_amount
    return TaxBreakdown(
        gross_amount=_dec(gross).quantize(CENT, rounding=ROUND_HALF_UP),
        iss_rate=_dec(iss_rate),
        iss_amount=iss.tax_amount,
        net_amount=iss.net_amount,
        withheld=withheld,
    )
