from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests.exceptions

from faturador.models.invoice import Environment
from faturador.services.exceptions import GatewayError, GatewayRejectError
from faturador.services.gateway_client import CancelState, GatewayClient, GatewayState

_REQUEST = "faturador.services.gateway_client.requests.request"


def _mock_response(ok: bool = True, status_code: int = 200, json_data=None, text: str = ""):
    resp = MagicMock()
    resp.ok = ok
    resp.status_code = status_code
    resp.json.return_value = json_data if json_data is not None else {}
    resp.text = text
    return resp


@pytest.fixture
def client() -> GatewayClient:
    return GatewayClient()


class TestIssue:
    @patch(_REQUEST)
    def test_success_with_number(self, mock_request, client):
        mock_request.return_value = _mock_response(
            json_data={
                "id": "gw-1",
                "numero": "123",
                "codigoVerificacao": "ABCD",
                "pdf": "https://x/pdf",
            }
        )
        result = client.issue({"idIntegracao": "att-1"}, Environment.SANDBOX, "tok")
        assert result.integration_id == "gw-1"
        assert result.invoice_number == "123"
        assert result.invoice_key == "ABCD"
        assert result.pdf_url == "https://x/pdf"

    @patch(_REQUEST)
    def test_request_shape(self, mock_request, client):
        mock_request.return_value = _mock_response(json_data={"id": "gw-1"})
        client.issue({"idIntegracao": "att-1"}, Environment.SANDBOX, "tok")
        args, kwargs = mock_request.call_args
        assert args == ("POST", "https://api.sandbox.plugnotas.com.br/nfse")
        assert kwargs["headers"]["x-api-key"] == "tok"
        assert kwargs["json"] == {"idIntegracao": "att-1"}
        assert kwargs["timeout"] == 30

    @patch(_REQUEST)
    def test_production_url(self, mock_request, client):
        mock_request.return_value = _mock_response(json_data={"id": "gw-1"})
        client.issue({"idIntegracao": "att-1"}, Environment.PRODUCTION, "tok")
        assert mock_request.call_args[0][1] == "https://api.plugnotas.com.br/nfse"

    @patch(_REQUEST)
    def test_accepted_without_number(self, mock_request, client):
        mock_request.return_value = _mock_response(
            json_data={"documents": [{"id": "gw-9", "idIntegracao": "att-1"}], "message": "ok"}
        )
        result = client.issue({"idIntegracao": "att-1"}, Environment.SANDBOX, "tok")
        assert result.integration_id == "gw-9"
        assert result.invoice_number is None

    @patch(_REQUEST)
    def test_falls_back_to_attempt_id(self, mock_request, client):
        mock_request.return_value = _mock_response(json_data={"protocolo": "p"})
        result = client.issue({"idIntegracao": "att-1"}, Environment.SANDBOX, "tok")
        assert result.integration_id == "att-1"

    @patch(_REQUEST)
    def test_rejected_situation(self, mock_request, client):
        mock_request.return_value = _mock_response(
            json_data={
                "id": "gw-1",
                "situacao": "REJEITADO",
                "mensagem": "CNPJ do tomador invalido",
            }
        )
        with pytest.raises(GatewayRejectError, match="CNPJ do tomador invalido"):
            client.issue({"idIntegracao": "att-1"}, Environment.SANDBOX, "tok")

    @patch(_REQUEST)
    def test_business_error_status(self, mock_request, client):
        mock_request.return_value = _mock_response(
            ok=False,
            status_code=400,
            json_data={"error": {"message": "Falha na validacao"}, "erros": ["campo x"]},
            text="bad",
        )
        with pytest.raises(GatewayRejectError) as exc_info:
            client.issue({"idIntegracao": "att-1"}, Environment.SANDBOX, "tok")
        assert exc_info.value.response["erros"] == ["campo x"]

    @patch(_REQUEST)
    def test_server_error_is_gateway_error(self, mock_request, client):
        mock_request.return_value = _mock_response(ok=False, status_code=502, text="x" * 1000)
        with pytest.raises(GatewayError, match="502") as exc_info:
            client.issue({"idIntegracao": "att-1"}, Environment.SANDBOX, "tok")
        assert len(str(exc_info.value)) < 600

    @patch(_REQUEST)
    def test_timeout_is_gateway_error(self, mock_request, client):
        mock_request.side_effect = requests.exceptions.Timeout("timed out")
        with pytest.raises(GatewayError, match="comunicacao"):
            client.issue({"idIntegracao": "att-1"}, Environment.SANDBOX, "tok")
        assert mock_request.call_count == 1

    @patch(_REQUEST)
    def test_connection_error_not_retried(self, mock_request, client):
        mock_request.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(GatewayError):
            client.issue({"idIntegracao": "att-1"}, Environment.SANDBOX, "tok")
        assert mock_request.call_count == 1

    @pytest.mark.parametrize(
        "exc",
        [
            requests.exceptions.ChunkedEncodingError("boom"),
            requests.exceptions.TooManyRedirects("loop"),
            requests.exceptions.InvalidURL("bad"),
        ],
    )
    def test_any_transport_error_is_gateway_error(self, client, exc):
        with patch(_REQUEST, side_effect=exc) as mock_request:
            with pytest.raises(GatewayError, match="comunicacao"):
                client.issue({"idIntegracao": "att-1"}, Environment.SANDBOX, "tok")
        assert mock_request.call_count == 1


class TestStatus:
    @patch(_REQUEST)
    def test_not_found_means_pending(self, mock_request, client):
        mock_request.return_value = _mock_response(ok=False, status_code=404)
        result = client.status("gw-1", Environment.SANDBOX, "tok")
        assert result.state is GatewayState.PENDING

    @patch(_REQUEST)
    def test_concluido(self, mock_request, client):
        mock_request.return_value = _mock_response(
            json_data=[{"situacao": "CONCLUIDO", "numero": "77", "codigoVerificacao": "K"}]
        )
        result = client.status("gw-1", Environment.SANDBOX, "tok")
        assert result.state is GatewayState.ISSUED
        assert result.invoice_number == "77"
        assert mock_request.call_args[0] == (
            "GET",
            "https://api.sandbox.plugnotas.com.br/nfse/gw-1",
        )

    @patch(_REQUEST)
    def test_rejected_with_reason(self, mock_request, client):
        mock_request.return_value = _mock_response(
            json_data={"situacao": "REJEITADO", "motivo": "Aliquota incompativel"}
        )
        result = client.status("gw-1", Environment.SANDBOX, "tok")
        assert result.state is GatewayState.REJECTED
        assert result.reason == "Aliquota incompativel"

    @patch(_REQUEST)
    def test_cancelled(self, mock_request, client):
        mock_request.return_value = _mock_response(json_data={"status": "cancelado"})
        result = client.status("gw-1", Environment.SANDBOX, "tok")
        assert result.state is GatewayState.CANCELLED

    @patch(_REQUEST)
    def test_unknown_situation_is_pending(self, mock_request, client):
        mock_request.return_value = _mock_response(json_data={"situacao": "EM_FILA"})
        result = client.status("gw-1", Environment.SANDBOX, "tok")
        assert result.state is GatewayState.PENDING


class TestCancel:
    @patch(_REQUEST)
    def test_posts_reason(self, mock_request, client):
        mock_request.return_value = _mock_response()
        client.cancel("gw-1", "Servico nao prestado", Environment.PRODUCTION, "tok")
        args, kwargs = mock_request.call_args
        assert args == ("POST", "https://api.plugnotas.com.br/nfse/gw-1/cancelar")
        assert kwargs["json"] == {"motivo": "Servico nao prestado"}

    @patch(_REQUEST)
    def test_refused(self, mock_request, client):
        mock_request.return_value = _mock_response(
            ok=False, status_code=422, json_data={"mensagem": "Prazo de cancelamento expirado"}
        )
        with pytest.raises(GatewayRejectError, match="Prazo"):
            client.cancel("gw-1", "Servico nao prestado", Environment.SANDBOX, "tok")


class TestDownload:
    @patch(_REQUEST)
    def test_returns_url(self, mock_request, client):
        mock_request.return_value = _mock_response(json_data={"url": "https://signed/x.pdf"})
        url = client.download("gw-1", "pdf", Environment.SANDBOX, "tok")
        assert url == "https://signed/x.pdf"
        assert mock_request.call_args[0][1].endswith("/nfse/gw-1/pdf")

    @patch(_REQUEST)
    def test_missing_url(self, mock_request, client):
        mock_request.return_value = _mock_response(json_data={})
        with pytest.raises(GatewayError, match="sem URL"):
            client.download("gw-1", "xml", Environment.SANDBOX, "tok")


class TestSubstitute:
    @patch(_REQUEST)
    def test_success(self, mock_request, client):
        mock_request.return_value = _mock_response(json_data={"id": "gw-2", "numero": "124"})
        result = client.substitute("gw-1", {"motivo": "m"}, Environment.SANDBOX, "tok")
        assert result.integration_id == "gw-2"
        assert result.invoice_number == "124"
        assert mock_request.call_args[0][1].endswith("/nfse/gw-1/substituir")


class TestCancelStatus:
    @patch(_REQUEST)
    def test_not_requested(self, mock_request, client):
        mock_request.return_value = _mock_response(ok=False, status_code=404)
        result = client.cancel_status("gw-1", Environment.SANDBOX, "tok")
        assert result.state is CancelState.NOT_REQUESTED
        assert mock_request.call_args[0] == (
            "GET",
            "https://api.sandbox.plugnotas.com.br/nfse/gw-1/cancelamento",
        )

    @patch(_REQUEST)
    def test_approved_with_protocol(self, mock_request, client):
        mock_request.return_value = _mock_response(
            json_data={
                "situacao": "CANCELADO",
                "protocolo": "PRT-55",
                "dataCancelamento": "2026-03-02T10:00:00",
            }
        )
        result = client.cancel_status("gw-1", Environment.PRODUCTION, "tok")
        assert result.state is CancelState.APPROVED
        assert result.protocol == "PRT-55"
        assert result.processed_at == "2026-03-02T10:00:00"

    @patch(_REQUEST)
    def test_rejected(self, mock_request, client):
        mock_request.return_value = _mock_response(
            json_data={"situacao": "Rejeitado", "mensagem": "Prazo de cancelamento expirado"}
        )
        result = client.cancel_status("gw-1", Environment.SANDBOX, "tok")
        assert result.state is CancelState.REJECTED
        assert result.reason == "Prazo de cancelamento expirado"

    @patch(_REQUEST)
    def test_processing_is_pending(self, mock_request, client):
        mock_request.return_value = _mock_response(
            json_data={"situacao": "PROCESSANDO", "protocoloCancelamento": "P-1"}
        )
        result = client.cancel_status("gw-1", Environment.SANDBOX, "tok")
        assert result.state is CancelState.PENDING
        assert result.protocol == "P-1"

    @patch(_REQUEST)
    def test_server_error(self, mock_request, client):
        mock_request.return_value = _mock_response(ok=False, status_code=500, text="down")
        with pytest.raises(GatewayError, match="500"):
            client.cancel_status("gw-1", Environment.SANDBOX, "tok")


class TestCheckConnection:
    @patch(_REQUEST)
    def test_ok(self, mock_request, client):
        mock_request.return_value = _mock_response()
        client.check_connection(Environment.SANDBOX, "tok")
        args, kwargs = mock_request.call_args
        assert args == ("GET", "https://api.sandbox.plugnotas.com.br/empresa")
        assert kwargs["headers"]["x-api-key"] == "tok"

    @patch(_REQUEST)
    def test_no_company_registered_is_ok(self, mock_request, client):
        mock_request.return_value = _mock_response(ok=False, status_code=404)
        client.check_connection(Environment.PRODUCTION, "tok")

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_token_refused(self, client, status_code):
        with patch(_REQUEST, return_value=_mock_response(ok=False, status_code=status_code)):
            with pytest.raises(GatewayError, match="Token recusado"):
                client.check_connection(Environment.PRODUCTION, "tok")

    @patch(_REQUEST)
    def test_unreachable(self, mock_request, client):
        mock_request.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(GatewayError, match="comunicacao"):
            client.check_connection(Environment.SANDBOX, "tok")
