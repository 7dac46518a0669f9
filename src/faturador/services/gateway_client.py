from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import requests

from faturador.config import ENDPOINTS, GATEWAY_TIMEOUT
from faturador.models.invoice import Environment
from faturador.services.exceptions import GatewayError, GatewayRejectError

logger = logging.getLogger(__name__)

_REJECTED_SITUATIONS = frozenset({"REJEITADO", "ERRO"})
_BUSINESS_ERROR_CODES = frozenset({400, 409, 422})


class GatewayState(str, Enum):
    ISSUED = "issued"
    PENDING = "pending"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


_SITUATION_MAP = {
    "CONCLUIDO": GatewayState.ISSUED,
    "AUTORIZADO": GatewayState.ISSUED,
    "REJEITADO": GatewayState.REJECTED,
    "ERRO": GatewayState.REJECTED,
    "CANCELADO": GatewayState.CANCELLED,
    "PROCESSANDO": GatewayState.PENDING,
}


class CancelState(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"
    NOT_REQUESTED = "not_requested"


_CANCEL_APPROVED = ("concluido", "aprovado", "cancelado")
_CANCEL_REJECTED = ("rejeitado", "erro")


@dataclass(frozen=True)
class IssueResult:
    integration_id: str
    invoice_number: str | None = None
    invoice_key: str | None = None
    pdf_url: str | None = None
    xml_url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusResult:
    state: GatewayState
    invoice_number: str | None = None
    invoice_key: str | None = None
    reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CancelStatusResult:
    state: CancelState
    protocol: str | None = None
    processed_at: str | None = None
    reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class Gateway(Protocol):
    def issue(self, payload: dict, environment: Environment, token: str) -> IssueResult: ...

    def status(self, integration_id: str, environment: Environment, token: str) -> StatusResult: ...

    def cancel(
        self, integration_id: str, reason: str, environment: Environment, token: str
    ) -> None: ...

    def cancel_status(
        self, integration_id: str, environment: Environment, token: str
    ) -> CancelStatusResult: ...

    def download(
        self, integration_id: str, fmt: str, environment: Environment, token: str
    ) -> str: ...

    def substitute(
        self, integration_id: str, payload: dict, environment: Environment, token: str
    ) -> IssueResult: ...

    def check_connection(self, environment: Environment, token: str) -> None: ...


def _format_erros(erros: object) -> str:
    """Format an ``erros`` field value as a human-readable string."""
    if isinstance(erros, list):
        return "; ".join(
            str(e.get("mensagem") or e.get("message") or e) if isinstance(e, dict) else str(e)
            for e in erros
        )
    return str(erros)


def _extract_reason(data: dict) -> str:
    """Best-effort extraction of a human-readable rejection reason."""
    for key in ("mensagem", "message", "motivo", "erro"):
        val = data.get(key)
        if val:
            return str(val)
    erros = data.get("erros") or data.get("error")
    if erros:
        return _format_erros(erros)
    return json.dumps(data, ensure_ascii=False)[:200]


def _situation(data: dict) -> str:
    return str(data.get("situacao") or data.get("status") or "").upper()


def _json(resp: Any) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    if isinstance(data, list):
        return data[0] if data and isinstance(data[0], dict) else {}
    return data if isinstance(data, dict) else {}


def _check_response(resp: Any, action: str) -> None:
    """Raise GatewayRejectError for business refusals, GatewayError for the rest."""
    if resp.ok:
        return
    body = resp.text[:500] if resp.text else ""
    if resp.status_code in _BUSINESS_ERROR_CODES:
        data = _json(resp)
        reason = _extract_reason(data) if data else body
        raise GatewayRejectError(f"Gateway recusou {action}: {reason}", response=data)
    raise GatewayError(f"Erro no gateway {action} ({resp.status_code}): {body}")


def _headers(token: str) -> dict[str, str]:
    return {"x-api-key": token, "Content-Type": "application/json"}


def _base_url(environment: Environment) -> str:
    return ENDPOINTS[Environment(environment).value]


def _send(method: str, url: str, token: str, payload: dict | None = None) -> Any:
    """One HTTP call, no retry. Transport failures surface as GatewayError."""
    try:
        return requests.request(
            method,
            url,
            headers=_headers(token),
            json=payload,
            timeout=GATEWAY_TIMEOUT,
        )
    except requests.exceptions.RequestException as exc:
        raise GatewayError(f"Falha de comunicacao com o gateway: {exc}") from exc


def _integration_id(data: dict) -> str | None:
    docs = data.get("documents")
    if isinstance(docs, list) and docs and isinstance(docs[0], dict):
        data = {**docs[0], **data}
    value = data.get("id") or data.get("idIntegracao")
    return str(value) if value else None


def _issue_result(data: dict, fallback_id: str | None) -> IssueResult:
    if _situation(data) in _REJECTED_SITUATIONS or (data.get("erros") and not data.get("id")):
        raise GatewayRejectError(_extract_reason(data), response=data)
    integration_id = _integration_id(data) or fallback_id
    if not integration_id:
        raise GatewayRejectError(
            f"Resposta sem identificador de integracao: {_extract_reason(data)}",
            response=data,
        )
    nfse = data.get("nfse") if isinstance(data.get("nfse"), dict) else {}
    return IssueResult(
        integration_id=integration_id,
        invoice_number=_str_or_none(data.get("numero") or nfse.get("numero")),
        invoice_key=_str_or_none(data.get("codigoVerificacao") or nfse.get("codigoVerificacao")),
        pdf_url=_str_or_none(data.get("pdf")),
        xml_url=_str_or_none(data.get("xml")),
        raw=data,
    )


def _str_or_none(value: object) -> str | None:
    if value is None or str(value).strip() == "":
        return None
    return str(value)


def _cancel_status_result(data: dict) -> CancelStatusResult:
    situation = str(data.get("situacao") or "").lower()
    state = CancelState.PENDING
    processed_at = reason = None
    if any(s in situation for s in _CANCEL_APPROVED):
        state = CancelState.APPROVED
        processed_at = _str_or_none(data.get("dataCancelamento") or data.get("dataProcessamento"))
    elif any(s in situation for s in _CANCEL_REJECTED):
        state = CancelState.REJECTED
        reason = _extract_reason(data)
    return CancelStatusResult(
        state=state,
        protocol=_str_or_none(data.get("protocolo") or data.get("protocoloCancelamento")),
        processed_at=processed_at,
        reason=reason,
        raw=data,
    )


class GatewayClient:
    """HTTP client for the fiscal gateway (PlugNotas-style JSON API)."""

    def issue(self, payload: dict, environment: Environment, token: str) -> IssueResult:
        """Submit one NFS-e. Accepted-but-unauthorised answers carry no number."""
        url = f"{_base_url(environment)}/nfse"
        resp = _send("POST", url, token, payload)
        _check_response(resp, "emissao")
        data = _json(resp)
        logger.debug("Gateway issue response: %s", json.dumps(data, ensure_ascii=False)[:500])
        return _issue_result(data, payload.get("idIntegracao"))

    def status(self, integration_id: str, environment: Environment, token: str) -> StatusResult:
        """Return the authoritative state. A 404 means the gateway is still processing."""
        url = f"{_base_url(environment)}/nfse/{integration_id}"
        resp = _send("GET", url, token)
        if resp.status_code == 404:
            return StatusResult(state=GatewayState.PENDING)
        _check_response(resp, "consulta")
        data = _json(resp)
        situation = _situation(data)
        state = _SITUATION_MAP.get(situation)
        if state is None:
            logger.warning("Situacao desconhecida no gateway: %r", situation)
            state = GatewayState.PENDING
        nfse = data.get("nfse") if isinstance(data.get("nfse"), dict) else {}
        reason = None
        if state is GatewayState.REJECTED:
            reason = _extract_reason(data)
        return StatusResult(
            state=state,
            invoice_number=_str_or_none(data.get("numero") or nfse.get("numero")),
            invoice_key=_str_or_none(
                data.get("codigoVerificacao") or nfse.get("codigoVerificacao")
            ),
            reason=reason,
            raw=data,
        )

    def cancel(
        self, integration_id: str, reason: str, environment: Environment, token: str
    ) -> None:
        url = f"{_base_url(environment)}/nfse/{integration_id}/cancelar"
        resp = _send("POST", url, token, {"motivo": reason})
        _check_response(resp, "cancelamento")

    def cancel_status(
        self, integration_id: str, environment: Environment, token: str
    ) -> CancelStatusResult:
        """State of the cancellation request. A 404 means none was filed."""
        url = f"{_base_url(environment)}/nfse/{integration_id}/cancelamento"
        resp = _send("GET", url, token)
        if resp.status_code == 404:
            return CancelStatusResult(state=CancelState.NOT_REQUESTED)
        _check_response(resp, "consulta de cancelamento")
        data = _json(resp)
        logger.debug("Gateway cancel status: %s", json.dumps(data, ensure_ascii=False)[:500])
        return _cancel_status_result(data)

    def download(
        self, integration_id: str, fmt: str, environment: Environment, token: str
    ) -> str:
        """Return a transient, gateway-signed URL for the PDF or XML."""
        url = f"{_base_url(environment)}/nfse/{integration_id}/{fmt}"
        resp = _send("GET", url, token)
        _check_response(resp, "download")
        data = _json(resp)
        link = data.get("url") or data.get("link")
        if not link:
            raise GatewayError(f"Resposta de download sem URL ({fmt})")
        return str(link)

    def substitute(
        self, integration_id: str, payload: dict, environment: Environment, token: str
    ) -> IssueResult:
        url = f"{_base_url(environment)}/nfse/{integration_id}/substituir"
        resp = _send("POST", url, token, payload)
        _check_response(resp, "substituicao")
        return _issue_result(_json(resp), None)

    def check_connection(self, environment: Environment, token: str) -> None:
        """Authenticated GET on the company endpoint; raises GatewayError when unusable.

        A 404 still proves the token was accepted (no company registered yet).
        """
        url = f"{_base_url(environment)}/empresa"
        resp = _send("GET", url, token)
        if resp.ok or resp.status_code == 404:
            return
        if resp.status_code in (401, 403):
            raise GatewayError(f"Token recusado pelo gateway no ambiente {environment.value}")
        body = resp.text[:500] if resp.text else ""
        raise GatewayError(f"Erro no gateway ({resp.status_code}): {body}")
