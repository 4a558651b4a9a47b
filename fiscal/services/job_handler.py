# fiscal/services/job_handler.py
"""
Execução de UMA tentativa de entrega de um SubmissionJob.

Fluxo:
  1. Carrega documento + configuração SUNAT da loja (ausente → FATAL).
  2. Documento já SENT com ticket → só retoma a consulta do ticket.
  3. Empacota o XML assinado no ZIP com o nome exigido pela SUNAT.
  4. SEND_DOCUMENT → sendBill (CDR direto ou ticket);
     SEND_SUMMARY  → sendSummary (sempre ticket).
  5. Ticket: grava imediatamente e consulta getStatus a cada
     TICKET_POLL_INTERVAL_SECONDS até TICKET_MAX_WAIT_SECONDS.
  6. Interpreta o CDR e classifica o resultado.

O handler não grava o resultado final: devolve um HandlerOutcome que o
worker aplica via apply_outcome.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from fiscal.archive import build_archive, build_filename, build_summary_filename
from fiscal.cdr_parser import parse_ack
from fiscal.conf import SubmissionConfig, get_submission_config
from fiscal.exceptions import (
    AckParseError,
    ArchiveError,
    SunatConfigurationError,
    SunatFaultError,
    SunatTransportError,
)
from fiscal.models import ElectronicDocument, SubmissionJob, SunatStoreConfig
from fiscal.services.outcome_service import persist_ticket
from fiscal.services.outcomes import HandlerOutcome
from fiscal.sunat_clients import SunatClientProtocol
from fiscal.sunat_codes import KIND_FATAL, KIND_REJECTION, RemoteCodeTable, get_code_table
from fiscal.sunat_factory import get_store_config, get_sunat_client_for_store

logger = logging.getLogger("pdv.fiscal")


ClientFactory = Callable[[SunatStoreConfig], SunatClientProtocol]


class SubmissionJobHandler:
    """
    Dependências injetáveis:
      - client_factory: loja → client SUNAT (padrão: get_sunat_client_for_store)
      - sleep / clock: usados só na espera do ticket (testes passam fakes)
    """

    def __init__(
        self,
        *,
        client_factory: Optional[ClientFactory] = None,
        config: Optional[SubmissionConfig] = None,
        code_table: Optional[RemoteCodeTable] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client_factory = client_factory or get_sunat_client_for_store
        self.config = config or get_submission_config()
        self.code_table = code_table or get_code_table()
        self.sleep = sleep
        self.clock = clock

    # -------------------------
    # Entrada principal
    # -------------------------
    def handle(self, job: SubmissionJob) -> HandlerOutcome:
        document = ElectronicDocument.objects.get(id=job.document_id)

        log_context = {
            "job_id": str(job.id),
            "document_id": str(document.id),
            "store_id": str(job.store_id),
            "worker": job.lease_owner,
            "attempts": job.attempts,
        }
        logger.info("sunat_job_handle_started", extra={"event": "sunat_job_handle", **log_context})

        try:
            store_config = get_store_config(job.store_id)
            client = self.client_factory(store_config)

            if document.status == ElectronicDocument.STATUS_SENT and document.remote_ticket:
                logger.info("sunat_ticket_resume", extra={"event": "sunat_ticket_resume", **log_context})
                return self._await_ticket(job, client, document.remote_ticket)

            if not document.signed_body:
                raise SunatConfigurationError("Documento sem XML assinado.")

            filename = self._filename_for(job, document, store_config.ruc)
            archive = build_archive(bytes(document.signed_body), filename)

            if job.job_type == SubmissionJob.TYPE_SEND_SUMMARY:
                ticket = client.submit_batch(filename, archive)
                return self._on_ticket(job, client, ticket)

            result = client.submit(filename, archive)
            if result.is_async:
                return self._on_ticket(job, client, result.ticket)
            return self._outcome_from_ack(result.ack_container)

        except SunatFaultError as exc:
            return self._outcome_from_fault(exc)
        except SunatTransportError as exc:
            return HandlerOutcome.transient(exc.code, exc.message)
        except AckParseError as exc:
            return HandlerOutcome.transient(exc.code, exc.message)
        except (SunatConfigurationError, ArchiveError) as exc:
            return HandlerOutcome.fatal(exc.code, exc.message)

    # -------------------------
    # Helpers
    # -------------------------
    @staticmethod
    def _filename_for(job: SubmissionJob, document: ElectronicDocument, ruc: str) -> str:
        if job.job_type == SubmissionJob.TYPE_SEND_SUMMARY:
            return build_summary_filename(ruc, document.series, document.issue_date, document.number)
        return build_filename(ruc, document.sunat_type_code, document.series, document.number)

    def _on_ticket(self, job: SubmissionJob, client: SunatClientProtocol, ticket: str) -> HandlerOutcome:
        persist_ticket(job, job.lease_owner, ticket)
        return self._await_ticket(job, client, ticket)

    def _await_ticket(self, job: SubmissionJob, client: SunatClientProtocol, ticket: str) -> HandlerOutcome:
        interval = self.config.ticket_poll_interval_seconds
        deadline = self.clock() + self.config.ticket_max_wait_seconds

        while True:
            status = client.poll_ticket(ticket)
            if not status.still_processing:
                break
            if self.clock() + interval > deadline:
                logger.info(
                    "sunat_ticket_still_processing",
                    extra={"event": "sunat_ticket_still_processing", "job_id": str(job.id)},
                )
                return HandlerOutcome.transient(
                    "TICKET_IN_PROCESS",
                    "Ticket ainda em processamento na SUNAT.",
                    remote_code=status.status_code,
                )
            self.sleep(interval)

        if status.ack_container:
            return self._outcome_from_ack(status.ack_container)

        definition = self.code_table.lookup(status.status_code)
        return self._outcome_from_kind(definition.kind, definition.code, definition.message)

    @staticmethod
    def _outcome_from_ack(container: Optional[bytes]) -> HandlerOutcome:
        if not container:
            return HandlerOutcome.transient("CDR_PARSE_ERROR", "Resposta da SUNAT sem CDR.")
        ack = parse_ack(container)
        if ack.accepted:
            return HandlerOutcome.accepted(ack.code, ack.message, ack_container=container, notes=ack.notes)
        return HandlerOutcome.rejected(ack.code, ack.message, ack_container=container, notes=ack.notes)

    def _outcome_from_fault(self, exc: SunatFaultError) -> HandlerOutcome:
        return self._outcome_from_kind(exc.kind, exc.code, exc.message)

    @staticmethod
    def _outcome_from_kind(kind: str, code: str, message: str) -> HandlerOutcome:
        if kind == KIND_REJECTION:
            return HandlerOutcome.rejected(code, message)
        if kind == KIND_FATAL:
            return HandlerOutcome.fatal("SOAP_FAULT", f"{code}: {message}", remote_code=code)
        return HandlerOutcome.transient("SOAP_FAULT", f"{code}: {message}", remote_code=code)
