from __future__ import annotations

import os
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

APP_NAME = "faturador-nfse"
KEYRING_SERVICE = "faturador-nfse"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve config dir for .env loading without depending on env vars from .env itself.

    Returns None if only platformdirs would resolve and the dir does not exist yet.
    """
    from_env = os.environ.get("FATURADOR_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# Load .env: cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def _resolve_dir(env_var: str, default_subdir: str, kind: str) -> Path:
    """Resolve a directory from env var, repo layout, or platform default.

    Priority: 1) env var, 2) dev repo layout, 3) platformdirs user directory.
    """
    from_env = os.environ.get(env_var)
    if from_env:
        return Path(from_env)
    # Development layout: src/faturador/config.py -> ../../.. = project root
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / default_subdir
    if candidate.is_dir():
        return candidate
    if kind == "config":
        return Path(platformdirs.user_config_dir(APP_NAME))
    return Path(platformdirs.user_data_dir(APP_NAME))


def get_config_dir() -> Path:
    """Resolve config directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("FATURADOR_CONFIG_DIR", "config", kind="config")


def get_data_dir() -> Path:
    """Resolve data directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("FATURADOR_DATA_DIR", "data", kind="data")


ENDPOINTS = {
    "SANDBOX": "https://api.sandbox.plugnotas.com.br",
    "PRODUCTION": "https://api.plugnotas.com.br",
}

GATEWAY_TIMEOUT = 30

# Placeholder written when a fiscal configuration is created by an environment switch
PENDING_CREDENTIAL = "pending"


# --- Keyring helpers ---


def _get_keyring_token(tenant_id: str) -> str | None:
    """Try to get the gateway token for *tenant_id* from the OS keyring.

    Returns None on any failure (no backend, not stored, dbus errors, etc.).
    """
    try:
        import keyring

        return keyring.get_password(KEYRING_SERVICE, tenant_id)
    except Exception:
        return None


def _set_keyring_token(tenant_id: str, token: str) -> bool:
    """Store the gateway token in the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.set_password(KEYRING_SERVICE, tenant_id, token)
        return True
    except Exception:
        return False


# --- Gateway credentials ---


def _tenant_env_key(tenant_id: str) -> str:
    slug = "".join(ch if ch.isalnum() else "_" for ch in tenant_id).upper()
    return f"FATURADOR_API_TOKEN_{slug}"


def get_api_token(tenant_id: str, stored: str | None = None) -> str | None:
    """Return the gateway API token for a tenant.

    Priority: 1) FATURADOR_API_TOKEN_<TENANT>, 2) FATURADOR_API_TOKEN,
    3) the token stored on the fiscal configuration (unless it is the
    placeholder), 4) OS keyring. Returns None when no source has one.
    """
    token = os.environ.get(_tenant_env_key(tenant_id)) or os.environ.get("FATURADOR_API_TOKEN")
    if token:
        return token
    if stored and stored != PENDING_CREDENTIAL:
        return stored
    return _get_keyring_token(tenant_id)


# --- YAML config ---


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    return yaml.safe_load(path.read_text()) or {}


def load_tenant() -> dict:
    """Load tenant configuration from config/tenant.yaml."""
    return load_yaml(get_config_dir() / "tenant.yaml")
