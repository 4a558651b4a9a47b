# fiscal/sunat_endpoints.py
"""
Endpoints SOAP da SUNAT por ambiente.

billService atende sendBill / sendSummary / getStatus(ticket).
"""

from __future__ import annotations

from dataclasses import dataclass


ENV_BETA = "BETA"
ENV_PROD = "PROD"


@dataclass(frozen=True)
class SunatEndpoints:
    bill_service: str
    consult_service: str


ENDPOINTS_BY_ENVIRONMENT: dict[str, SunatEndpoints] = {
    ENV_BETA: SunatEndpoints(
        bill_service="https://e-beta.sunat.gob.pe/ol-ti-itcpfegem-beta/billService",
        consult_service="https://e-beta.sunat.gob.pe/ol-ti-itcpfegem-beta/billConsultService",
    ),
    ENV_PROD: SunatEndpoints(
        bill_service="https://e-factura.sunat.gob.pe/ol-ti-itcpfegem/billService",
        consult_service="https://e-factura.sunat.gob.pe/ol-it-wsconscpegem/billConsultService",
    ),
}


def normalize_environment(environment: str | None) -> str:
    """
    Aceita variações comuns ("beta", "homolog", "test", "prod", "produccion").
    Valor desconhecido cai em BETA: nunca enviar para produção por engano.
    """
    if not environment:
        return ENV_BETA

    env = environment.strip().lower()
    if env in {"prod", "production", "produccion", "producción", "producao"}:
        return ENV_PROD
    return ENV_BETA


def endpoints_for(environment: str | None) -> SunatEndpoints:
    return ENDPOINTS_BY_ENVIRONMENT[normalize_environment(environment)]
