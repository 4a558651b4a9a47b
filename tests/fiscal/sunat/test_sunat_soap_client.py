import base64
import logging

import pytest
import requests

from fiscal.credentials import SolCredentials
from fiscal.exceptions import SunatFaultError, SunatTransportError
from fiscal.sunat_clients import UNCLASSIFIED_FAULT_CODE, SunatSoapClient, build_ack_container
from fiscal.sunat_codes import KIND_FATAL, KIND_REJECTION, KIND_TRANSIENT, REMOTE_CODE_MAX_LENGTH
from fiscal.sunat_endpoints import ENDPOINTS_BY_ENVIRONMENT, ENV_BETA, ENV_PROD


RUC = "20123456789"
PASSWORD = "s3nh4-s0l-secreta"


class FakeResponse:
    def __init__(self, status_code=200, content=b""):
        self.status_code = status_code
        self.content = content


class FakeSession:
    """
    Registra os POSTs e devolve respostas roteirizadas.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.requests.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        step = self.responses.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


def _envelope(body: str) -> bytes:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<soap-env:Envelope xmlns:soap-env="http://schemas.xmlsoap.org/soap/envelope/">'
        f"<soap-env:Body>{body}</soap-env:Body></soap-env:Envelope>"
    ).encode("utf-8")


def _fault(faultcode: str, faultstring: str = "") -> bytes:
    return _envelope(
        "<soap-env:Fault>"
        f"<faultcode>{faultcode}</faultcode><faultstring>{faultstring}</faultstring>"
        "</soap-env:Fault>"
    )


@pytest.fixture
def credentials():
    return SolCredentials(ruc=RUC, sol_user="MODDATOS", sol_password=PASSWORD)


def _client(credentials, session, environment="BETA"):
    return SunatSoapClient(environment=environment, credentials=credentials, session=session, timeout=7)


def test_send_bill_com_cdr_sincrono(credentials):
    cdr = build_ack_container("20123456789-01-F001-00000001.xml")
    session = FakeSession(
        FakeResponse(
            200,
            _envelope(
                '<br:sendBillResponse xmlns:br="http://service.sunat.gob.pe">'
                f"<applicationResponse>{base64.b64encode(cdr).decode()}</applicationResponse>"
                "</br:sendBillResponse>"
            ),
        )
    )
    client = _client(credentials, session)

    result = client.submit("20123456789-01-F001-00000001.xml", b"PKzip")

    assert result.is_async is False
    assert result.ack_container == cdr

    sent = session.requests[0]
    assert sent["url"] == ENDPOINTS_BY_ENVIRONMENT[ENV_BETA].bill_service
    assert sent["headers"]["SOAPAction"] == "urn:sendBill"
    assert sent["timeout"] == 7
    body = sent["data"].decode("utf-8")
    assert "20123456789MODDATOS" in body
    assert "20123456789-01-F001-00000001.zip" in body
    assert base64.b64encode(b"PKzip").decode() in body


def test_send_bill_com_ticket(credentials):
    session = FakeSession(
        FakeResponse(200, _envelope('<br:sendBillResponse xmlns:br="http://service.sunat.gob.pe"><ticket> 1712345678901 </ticket></br:sendBillResponse>'))
    )

    result = _client(credentials, session).submit("a.xml", b"zip")

    assert result.is_async is True
    assert result.ticket == "1712345678901"


def test_send_summary_devolve_ticket(credentials):
    session = FakeSession(FakeResponse(200, _envelope("<sendSummaryResponse><ticket>555</ticket></sendSummaryResponse>")))

    ticket = _client(credentials, session).submit_batch("20123456789-RC-20240101-00001.xml", b"zip")

    assert ticket == "555"
    assert session.requests[0]["headers"]["SOAPAction"] == "urn:sendSummary"


def test_get_status_em_processamento_e_concluido(credentials):
    cdr = build_ack_container("resumo.xml")
    session = FakeSession(
        FakeResponse(200, _envelope("<getStatusResponse><status><statusCode>98</statusCode></status></getStatusResponse>")),
        FakeResponse(
            200,
            _envelope(
                "<getStatusResponse><status><statusCode>0</statusCode>"
                f"<content>{base64.b64encode(cdr).decode()}</content></status></getStatusResponse>"
            ),
        ),
    )
    client = _client(credentials, session)

    first = client.poll_ticket("555")
    second = client.poll_ticket("555")

    assert first.still_processing is True
    assert first.ack_container is None
    assert second.still_processing is False
    assert second.status_code == "0"
    assert second.ack_container == cdr


@pytest.mark.parametrize(
    "faultcode, code, kind",
    [
        ("soap-env:Client.0102", "0102", KIND_FATAL),
        ("soap-env:Server.0130", "0130", KIND_TRANSIENT),
        ("soap-env:Client.2335", "2335", KIND_REJECTION),
    ],
)
def test_soap_fault_e_classificado_pela_tabela(credentials, faultcode, code, kind):
    session = FakeSession(FakeResponse(500, _fault(faultcode, "detalhe")))

    with pytest.raises(SunatFaultError) as exc:
        _client(credentials, session).submit("a.xml", b"zip")

    assert exc.value.code == code
    assert exc.value.kind == kind
    assert exc.value.raw["http_status"] == 500


def test_soap_fault_com_codigo_no_faultstring(credentials):
    session = FakeSession(FakeResponse(500, _fault("soap-env:Server", "0109")))

    with pytest.raises(SunatFaultError) as exc:
        _client(credentials, session).submit("a.xml", b"zip")

    assert exc.value.code == "0109"
    assert exc.value.kind == KIND_TRANSIENT


def test_soap_fault_sem_codigo_numerico_usa_codigo_curto(credentials):
    session = FakeSession(FakeResponse(500, _fault("soap-env:Server", "Internal Error")))

    with pytest.raises(SunatFaultError) as exc:
        _client(credentials, session).submit("a.xml", b"zip")

    assert exc.value.code == UNCLASSIFIED_FAULT_CODE
    assert len(exc.value.code) <= REMOTE_CODE_MAX_LENGTH
    assert exc.value.kind == KIND_TRANSIENT
    assert exc.value.message == "Internal Error"
    assert exc.value.raw["faultcode"] == "soap-env:Server"


def test_timeout_vira_erro_de_transporte(credentials):
    session = FakeSession(requests.Timeout("read timed out"))

    with pytest.raises(SunatTransportError) as exc:
        _client(credentials, session).submit("a.xml", b"zip")

    assert exc.value.code == "TRANSPORT_ERROR"
    assert exc.value.raw["error"] == "timeout"


def test_erro_de_conexao_vira_erro_de_transporte(credentials):
    session = FakeSession(requests.ConnectionError("refused"))

    with pytest.raises(SunatTransportError):
        _client(credentials, session).poll_ticket("1")


def test_http_500_sem_fault_vira_erro_de_transporte(credentials):
    session = FakeSession(FakeResponse(503, b"<html>Service Unavailable</html>"))

    with pytest.raises(SunatTransportError) as exc:
        _client(credentials, session).submit("a.xml", b"zip")

    assert exc.value.raw["http_status"] == 503


def test_resposta_ilegivel_vira_erro_de_transporte(credentials):
    session = FakeSession(FakeResponse(200, b"nao e xml"))

    with pytest.raises(SunatTransportError):
        _client(credentials, session).submit("a.xml", b"zip")


def test_send_bill_sem_cdr_e_sem_ticket_vira_erro_de_transporte(credentials):
    session = FakeSession(FakeResponse(200, _envelope("<sendBillResponse/>")))

    with pytest.raises(SunatTransportError):
        _client(credentials, session).submit("a.xml", b"zip")


def test_ambiente_prod_usa_endpoint_de_producao(credentials):
    session = FakeSession(FakeResponse(200, _envelope("<sendSummaryResponse><ticket>1</ticket></sendSummaryResponse>")))

    _client(credentials, session, environment="produccion").submit_batch("a.xml", b"zip")

    assert session.requests[0]["url"] == ENDPOINTS_BY_ENVIRONMENT[ENV_PROD].bill_service


def test_senha_nao_aparece_em_logs_nem_repr(credentials, caplog):
    caplog.set_level(logging.DEBUG, logger="pdv.fiscal")
    session = FakeSession(FakeResponse(500, _fault("soap-env:Client.0102")))
    client = _client(credentials, session)

    with pytest.raises(SunatFaultError) as exc:
        client.submit("a.xml", b"zip")

    assert PASSWORD not in caplog.text
    assert all(PASSWORD not in str(getattr(r, "__dict__", {})) for r in caplog.records)
    assert PASSWORD not in repr(client)
    assert PASSWORD not in repr(credentials)
    assert PASSWORD not in str(exc.value.raw)


def test_modulos_sem_helpers_orfaos():
    from fiscal import sunat_clients
    from fiscal.models import SubmissionJob

    assert not hasattr(sunat_clients, "build_empty_zip")
    assert not hasattr(SubmissionJob, "is_active")
