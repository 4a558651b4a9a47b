# fiscal/exceptions.py
"""
Taxonomia de erros do pipeline de envio SUNAT.

Quatro famílias, com tratamento distinto:

  - Pré-condição de estado (InvalidStateError, DocumentNotFoundError):
    rejeitadas de forma síncrona na borda (enqueue/retry), nunca reprocessadas.
  - Falha transitória de entrega (SunatTransportError, AckParseError,
    SunatFaultError com código transitório): reagendada via tabela de backoff.
  - Rejeição de negócio (SunatFaultError com código de rejeição, ou CDR
    rejeitado): terminal, exposta como veio da SUNAT.
  - Falha técnica fatal (SunatConfigurationError, SunatFaultError fatal,
    erros de programação): terminal imediatamente.
"""

from __future__ import annotations

from typing import Any, Dict


# Códigos de erro do domínio
ERR_INVALID_STATE = "INVALID_STATE"
ERR_DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
ERR_INVALID_TRANSITION = "INVALID_TRANSITION"
ERR_NOT_CONFIGURED = "SUNAT_NOT_CONFIGURED"
ERR_INTERNAL = "INTERNAL_ERROR"


class SubmissionError(Exception):
    """
    Base de todos os erros do pipeline. Sempre carrega um `code` estável.
    """

    code = ERR_INTERNAL

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def as_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class DocumentNotFoundError(SubmissionError):
    code = ERR_DOCUMENT_NOT_FOUND


class InvalidStateError(SubmissionError):
    """
    Documento fora do estado exigido pela operação (ex.: enqueue fora de SIGNED).
    """

    code = ERR_INVALID_STATE

    def __init__(self, message: str, *, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status


class InvalidTransitionError(SubmissionError):
    code = ERR_INVALID_TRANSITION


class SunatConfigurationError(SubmissionError):
    """
    Loja sem configuração SUNAT, desabilitada, ou sem credenciais SOL.
    Tentar de novo reproduz o mesmo erro, portanto é fatal.
    """

    code = ERR_NOT_CONFIGURED


class SunatTechnicalError(SubmissionError):
    """
    Erros na comunicação com a SUNAT.

    `raw` guarda apenas metadados seguros (status HTTP, código remoto).
    """

    code = "SUNAT_TECHNICAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        raw: Dict[str, Any] | None = None,
    ):
        super().__init__(message, code=code)
        self.raw: Dict[str, Any] = raw or {}


class SunatTransportError(SunatTechnicalError):
    """
    Timeout, conexão recusada, HTTP 5xx sem SOAP fault. Sempre transitório.
    """

    code = "TRANSPORT_ERROR"


class SunatFaultError(SunatTechnicalError):
    """
    A SUNAT respondeu explicitamente com um SOAP fault.

    `kind` vem da tabela de códigos remotos: transient | rejection | fatal.
    """

    code = "SOAP_FAULT"

    def __init__(
        self,
        message: str,
        *,
        code: str,
        kind: str,
        raw: Dict[str, Any] | None = None,
    ):
        super().__init__(message, code=code, raw=raw)
        self.kind = kind


class ArchiveError(SubmissionError):
    code = "ARCHIVE_ERROR"


class AckParseError(SubmissionError):
    """
    CDR vazio, corrompido ou sem ResponseCode. Tratado como transitório
    (pode ser corrupção no transporte).
    """

    code = "CDR_PARSE_ERROR"
