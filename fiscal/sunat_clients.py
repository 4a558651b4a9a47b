"""
Camada de client SUNAT.

Este módulo define:

- DTOs de resposta (SubmitResult, TicketStatus).
- O contrato SunatClientProtocol, do qual o job handler depende.
- SunatSoapClient: client real, SOAP 1.1 sobre HTTPS com WS-Security
  UsernameToken (usuário/senha SOL), via requests.Session.
- MockSunatClient, usado em desenvolvimento/teste (sempre aceita).
- MockSunatClientAlwaysFail, usado em testes de falha transitória.

Operações SUNAT:
  - sendBill(fileName, contentFile)   → applicationResponse (CDR zip, base64)
                                         ou ticket (processamento assíncrono)
  - sendSummary(fileName, contentFile) → ticket
  - getStatus(ticket)                  → statusCode + content (CDR)
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Protocol

import requests

from fiscal.archive import build_archive, zip_name_for
from fiscal.credentials import SolCredentials
from fiscal.exceptions import SunatFaultError, SunatTransportError
from fiscal.sunat_codes import RemoteCodeTable, clip_remote_code, get_code_table, normalize_code
from fiscal.sunat_endpoints import endpoints_for, normalize_environment

logger = logging.getLogger("pdv.fiscal")


SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SUNAT_SERVICE_NS = "http://service.sunat.gob.pe"
WSSE_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"

# getStatus(ticket)
TICKET_STATUS_DONE = "0"
TICKET_STATUS_IN_PROCESS = "98"
TICKET_STATUS_WITH_ERRORS = "99"

# SOAP fault sem código numérico (ex.: "soap-env:Server" com texto livre)
UNCLASSIFIED_FAULT_CODE = "SERVER"


# ---------------------------------------------------------------------------
# DTOs de resposta da SUNAT
# ---------------------------------------------------------------------------


@dataclass
class SubmitResult:
    """
    Resultado de um sendBill.

    Exatamente um dos dois vem preenchido:
      - ack_container: CDR zipado (resposta síncrona)
      - ticket: número de ticket (resposta assíncrona, consultar via getStatus)
    """

    ack_container: Optional[bytes] = None
    ticket: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_async(self) -> bool:
        return self.ticket is not None


@dataclass
class TicketStatus:
    """
    Resultado de um getStatus(ticket).
    """

    status_code: str
    ack_container: Optional[bytes]
    still_processing: bool
    raw: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Contrato do client SUNAT
# ---------------------------------------------------------------------------


class SunatClientProtocol(Protocol):
    """
    Contrato mínimo que um client SUNAT deve cumprir.

    Falhas de transporte levantam SunatTransportError; SOAP faults levantam
    SunatFaultError já classificado pela tabela de códigos.
    """

    def submit(self, filename: str, archive: bytes) -> SubmitResult:
        ...

    def submit_batch(self, filename: str, archive: bytes) -> str:
        ...

    def poll_ticket(self, ticket: str) -> TicketStatus:
        ...


# ---------------------------------------------------------------------------
# Client SOAP real
# ---------------------------------------------------------------------------


ET.register_namespace("soapenv", SOAP_ENV_NS)
ET.register_namespace("ser", SUNAT_SERVICE_NS)
ET.register_namespace("wsse", WSSE_NS)


class SunatSoapClient:
    """
    Client SOAP da SUNAT (billService).

    Regras:
      - Nunca loga o envelope (contém a senha SOL) nem o conteúdo do ZIP.
      - Timeout, erro de conexão, HTTP sem SOAP fault ou resposta ilegível
        → SunatTransportError (transitório).
      - SOAP fault → SunatFaultError com o código extraído do faultcode e
        a classificação da tabela de códigos remotos.
    """

    def __init__(
        self,
        *,
        environment: str,
        credentials: SolCredentials,
        session: Optional[requests.Session] = None,
        timeout: float = 60.0,
        code_table: Optional[RemoteCodeTable] = None,
    ):
        self.environment = normalize_environment(environment)
        self.credentials = credentials
        self.session = session or requests.Session()
        self.timeout = timeout
        self.code_table = code_table or get_code_table()
        self.endpoints = endpoints_for(self.environment)

    def __repr__(self) -> str:
        return f"SunatSoapClient(environment={self.environment!r}, ruc={self.credentials.ruc!r})"

    # -------------------------
    # Envelope
    # -------------------------
    def _build_envelope(self, operation: str, params: Dict[str, str]) -> bytes:
        envelope = ET.Element(f"{{{SOAP_ENV_NS}}}Envelope")

        header = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Header")
        security = ET.SubElement(header, f"{{{WSSE_NS}}}Security")
        token = ET.SubElement(security, f"{{{WSSE_NS}}}UsernameToken")
        ET.SubElement(token, f"{{{WSSE_NS}}}Username").text = self.credentials.username
        ET.SubElement(token, f"{{{WSSE_NS}}}Password").text = self.credentials.sol_password

        body = ET.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
        op = ET.SubElement(body, f"{{{SUNAT_SERVICE_NS}}}{operation}")
        for name, value in params.items():
            ET.SubElement(op, name).text = value

        return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)

    # -------------------------
    # Transporte
    # -------------------------
    def _call(self, operation: str, params: Dict[str, str], *, url: Optional[str] = None) -> ET.Element:
        target = url or self.endpoints.bill_service
        payload = self._build_envelope(operation, params)
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": f"urn:{operation}",
        }

        started = time.monotonic()
        try:
            response = self.session.post(target, data=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise SunatTransportError(
                f"Timeout na chamada {operation} à SUNAT.",
                raw={"operation": operation, "error": "timeout"},
            ) from exc
        except requests.RequestException as exc:
            raise SunatTransportError(
                f"Falha de conexão na chamada {operation} à SUNAT: {exc.__class__.__name__}.",
                raw={"operation": operation, "error": exc.__class__.__name__},
            ) from exc

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "sunat_soap_response",
            extra={
                "event": "sunat_soap_response",
                "operation": operation,
                "environment": self.environment,
                "http_status": response.status_code,
                "elapsed_ms": elapsed_ms,
            },
        )

        root = None
        if response.content:
            try:
                root = ET.fromstring(response.content)
            except ET.ParseError:
                root = None

        if root is not None:
            fault = root.find(f".//{{{SOAP_ENV_NS}}}Fault")
            if fault is None:
                fault = root.find(".//{*}Fault")
            if fault is not None:
                raise self._fault_error(operation, fault, response.status_code)

        if response.status_code >= 300:
            raise SunatTransportError(
                f"SUNAT respondeu HTTP {response.status_code} em {operation}.",
                raw={"operation": operation, "http_status": response.status_code},
            )

        if root is None:
            raise SunatTransportError(
                f"Resposta ilegível da SUNAT em {operation}.",
                raw={"operation": operation, "http_status": response.status_code},
            )

        return root

    def _fault_error(self, operation: str, fault: ET.Element, http_status: int) -> SunatFaultError:
        faultcode = (fault.findtext("faultcode") or fault.findtext("{*}faultcode") or "").strip()
        faultstring = (fault.findtext("faultstring") or fault.findtext("{*}faultstring") or "").strip()

        code = normalize_code(faultcode)
        if not code and faultstring.isdigit():
            # Algumas respostas trazem "soap-env:Server" + código no faultstring
            code = normalize_code(faultstring)

        definition = self.code_table.lookup(code)
        message = definition.message or faultstring or faultcode or f"SOAP fault em {operation}"

        return SunatFaultError(
            message,
            code=clip_remote_code(definition.code) or UNCLASSIFIED_FAULT_CODE,
            kind=definition.kind,
            raw={
                "operation": operation,
                "http_status": http_status,
                "faultcode": faultcode,
                "faultstring": faultstring,
            },
        )

    @staticmethod
    def _decode_b64(value: str, operation: str) -> bytes:
        try:
            return base64.b64decode(value.strip(), validate=False)
        except (binascii.Error, ValueError) as exc:
            raise SunatTransportError(
                f"Conteúdo base64 inválido na resposta de {operation}.",
                raw={"operation": operation},
            ) from exc

    # -------------------------
    # Operações
    # -------------------------
    def submit(self, filename: str, archive: bytes) -> SubmitResult:
        zip_name = zip_name_for(filename)
        root = self._call(
            "sendBill",
            {"fileName": zip_name, "contentFile": base64.b64encode(archive).decode("ascii")},
        )

        application_response = root.findtext(".//{*}applicationResponse")
        if application_response and application_response.strip():
            return SubmitResult(
                ack_container=self._decode_b64(application_response, "sendBill"),
                raw={"operation": "sendBill", "file_name": zip_name},
            )

        ticket = root.findtext(".//{*}ticket")
        if ticket and ticket.strip():
            return SubmitResult(ticket=ticket.strip(), raw={"operation": "sendBill", "file_name": zip_name})

        raise SunatTransportError(
            "Resposta de sendBill sem applicationResponse e sem ticket.",
            raw={"operation": "sendBill", "file_name": zip_name},
        )

    def submit_batch(self, filename: str, archive: bytes) -> str:
        zip_name = zip_name_for(filename)
        root = self._call(
            "sendSummary",
            {"fileName": zip_name, "contentFile": base64.b64encode(archive).decode("ascii")},
        )

        ticket = root.findtext(".//{*}ticket")
        if not ticket or not ticket.strip():
            raise SunatTransportError(
                "Resposta de sendSummary sem ticket.",
                raw={"operation": "sendSummary", "file_name": zip_name},
            )
        return ticket.strip()

    def poll_ticket(self, ticket: str) -> TicketStatus:
        root = self._call("getStatus", {"ticket": ticket})

        status_code = (root.findtext(".//{*}statusCode") or "").strip()
        if not status_code:
            raise SunatTransportError(
                "Resposta de getStatus sem statusCode.",
                raw={"operation": "getStatus", "ticket": ticket},
            )

        content = root.findtext(".//{*}content")
        ack_container = self._decode_b64(content, "getStatus") if content and content.strip() else None

        return TicketStatus(
            status_code=status_code,
            ack_container=ack_container,
            still_processing=status_code == TICKET_STATUS_IN_PROCESS,
            raw={"operation": "getStatus", "ticket": ticket, "status_code": status_code},
        )


# ---------------------------------------------------------------------------
# CDR de mentira (mocks e testes)
# ---------------------------------------------------------------------------


def build_ack_container(
    reference_filename: str,
    *,
    code: str = "0",
    description: str = "La Factura ha sido aceptada",
    notes: Iterable[str] = (),
) -> bytes:
    """
    Monta um CDR mínimo (ApplicationResponse) zipado como R-{nome}.xml.
    """
    ar_ns = "urn:oasis:names:specification:ubl:schema:xsd:ApplicationResponse-2"
    cac_ns = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
    cbc_ns = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"

    root = ET.Element(f"{{{ar_ns}}}ApplicationResponse")
    ET.SubElement(root, f"{{{cbc_ns}}}ID").text = uuid.uuid4().hex[:12]
    for note in notes:
        ET.SubElement(root, f"{{{cbc_ns}}}Note").text = note

    doc_response = ET.SubElement(root, f"{{{cac_ns}}}DocumentResponse")
    response = ET.SubElement(doc_response, f"{{{cac_ns}}}Response")
    ET.SubElement(response, f"{{{cbc_ns}}}ReferenceID").text = reference_filename
    ET.SubElement(response, f"{{{cbc_ns}}}ResponseCode").text = code
    ET.SubElement(response, f"{{{cbc_ns}}}Description").text = description

    xml_bytes = ET.tostring(root, encoding="utf-8", xml_declaration=True)
    stem = reference_filename[:-4] if reference_filename.lower().endswith((".xml", ".zip")) else reference_filename
    return build_archive(xml_bytes, f"R-{stem}.xml")


# ---------------------------------------------------------------------------
# Implementações mock
# ---------------------------------------------------------------------------


class MockSunatClient:
    """
    Implementação mock de client SUNAT.

    Simula uma SUNAT que aceita tudo:
      - submit → CDR com ResponseCode 0
      - submit_batch → ticket
      - poll_ticket → statusCode 0 com CDR de aceite
    """

    def __init__(self, *, environment: str = "BETA", ruc: Optional[str] = None):
        self.environment = normalize_environment(environment)
        self.ruc = ruc
        self._tickets: Dict[str, str] = {}

    def submit(self, filename: str, archive: bytes) -> SubmitResult:
        return SubmitResult(
            ack_container=build_ack_container(filename, description="Comprobante aceptado (mock)."),
            raw={"operation": "sendBill", "mock": True},
        )

    def submit_batch(self, filename: str, archive: bytes) -> str:
        ticket = f"{int(time.time() * 1000)}{uuid.uuid4().int % 1000:03d}"
        self._tickets[ticket] = filename
        return ticket

    def poll_ticket(self, ticket: str) -> TicketStatus:
        # Status final: o ticket sai do mapa
        filename = self._tickets.pop(ticket, f"{ticket}.xml")
        return TicketStatus(
            status_code=TICKET_STATUS_DONE,
            ack_container=build_ack_container(filename, description="Resumen aceptado (mock)."),
            still_processing=False,
            raw={"operation": "getStatus", "mock": True},
        )


class MockSunatClientAlwaysFail(MockSunatClient):
    """
    Mock de client SUNAT que SEMPRE falha no transporte.

    Usado em testes de backoff / esgotamento de tentativas.
    """

    def _raise_transport_error(self, operation: str) -> None:
        raise SunatTransportError(
            "Falha técnica simulada na comunicação com a SUNAT (mock).",
            raw={"operation": operation, "mock": True, "environment": self.environment},
        )

    def submit(self, filename: str, archive: bytes) -> SubmitResult:
        self._raise_transport_error("sendBill")

    def submit_batch(self, filename: str, archive: bytes) -> str:
        self._raise_transport_error("sendSummary")

    def poll_ticket(self, ticket: str) -> TicketStatus:
        self._raise_transport_error("getStatus")
