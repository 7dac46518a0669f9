from __future__ import annotations

from dataclasses import dataclass

from faturador.config import PENDING_CREDENTIAL
from faturador.models.invoice import Environment


@dataclass(frozen=True)
class FiscalConfig:
    """Per-tenant gateway settings. One record per company."""

    company_id: str
    environment: Environment
    api_token: str = PENDING_CREDENTIAL
    client_id: str = PENDING_CREDENTIAL
    client_secret: str = PENDING_CREDENTIAL

    @classmethod
    def from_dict(cls, d: dict) -> FiscalConfig:
        return cls(
            company_id=d["company_id"],
            environment=Environment.parse(d.get("environment")),
            api_token=d.get("api_token") or PENDING_CREDENTIAL,
            client_id=d.get("client_id") or PENDING_CREDENTIAL,
            client_secret=d.get("client_secret") or PENDING_CREDENTIAL,
        )

    @property
    def has_placeholder_credentials(self) -> bool:
        return self.api_token == PENDING_CREDENTIAL
