"""Per-tenant SANDBOX/PRODUCTION switch.

Switching to PRODUCTION changes the legal effect of every later issuance, so
the caller must pass ``confirmed=True`` after asking the operator. Invoices
already issued keep the environment stamped on them.
"""

from __future__ import annotations

import logging

from faturador.config import PENDING_CREDENTIAL, get_api_token
from faturador.models.fiscal_config import FiscalConfig
from faturador.models.invoice import Environment
from faturador.services.exceptions import PreconditionError
from faturador.services.gateway_client import Gateway
from faturador.utils.store import FISCAL_CONFIG, Store

logger = logging.getLogger(__name__)


def load_fiscal_config(store: Store, tenant_id: str) -> FiscalConfig | None:
    record = store.find_one(FISCAL_CONFIG, company_id=tenant_id)
    return FiscalConfig.from_dict(record) if record else None


def get_environment(store: Store, tenant_id: str) -> Environment:
    """Current environment for a tenant. No configuration means SANDBOX."""
    cfg = load_fiscal_config(store, tenant_id)
    return cfg.environment if cfg else Environment.SANDBOX


def set_environment(
    store: Store,
    tenant_id: str,
    env: Environment | str,
    *,
    confirmed: bool = False,
) -> FiscalConfig:
    """Switch the tenant's environment, creating its configuration on first use.

    A new configuration gets placeholder credentials that must be completed
    before real issuance succeeds.
    """
    target = Environment.parse(env) if isinstance(env, str) else env
    if target is Environment.PRODUCTION and not confirmed:
        raise PreconditionError(
            "Mudanca para PRODUCAO exige confirmacao explicita: "
            "notas emitidas terao validade fiscal"
        )

    record, created = store.upsert(
        FISCAL_CONFIG,
        {"company_id": tenant_id},
        {"environment": target.value},
        defaults={
            "api_token": PENDING_CREDENTIAL,
            "client_id": PENDING_CREDENTIAL,
            "client_secret": PENDING_CREDENTIAL,
        },
    )
    if created:
        logger.info("Fiscal configuration created for %s (%s)", tenant_id, target.value)
    else:
        logger.info("Environment for %s switched to %s", tenant_id, target.value)
    return FiscalConfig.from_dict(record)


def resolve_issuance_context(store: Store, tenant_id: str) -> tuple[Environment, str]:
    """Read environment and gateway token once, for a single issuance.

    Raises PreconditionError when no usable credential exists.
    """
    cfg = load_fiscal_config(store, tenant_id)
    env = cfg.environment if cfg else Environment.SANDBOX
    token = get_api_token(tenant_id, cfg.api_token if cfg else None)
    if not token:
        raise PreconditionError(
            "Credenciais do gateway nao configuradas para esta empresa "
            f"(ambiente {env.value}). Configure o token antes de emitir."
        )
    return env, token


def credentials_for(store: Store, tenant_id: str) -> str:
    """Gateway token for follow-up calls (status, cancel, download)."""
    cfg = load_fiscal_config(store, tenant_id)
    token = get_api_token(tenant_id, cfg.api_token if cfg else None)
    if not token:
        raise PreconditionError("Credenciais do gateway nao configuradas para esta empresa")
    return token


def check_gateway(store: Store, gateway: Gateway, tenant_id: str) -> Environment:
    """Verify the tenant's token against the gateway of its current environment.

    Returns the environment checked. Raises PreconditionError without any
    call when no credential exists, GatewayError when the gateway is
    unreachable or refuses the token.
    """
    env, token = resolve_issuance_context(store, tenant_id)
    gateway.check_connection(env, token)
    logger.info("Gateway connection OK for %s (%s)", tenant_id, env.value)
    return env
