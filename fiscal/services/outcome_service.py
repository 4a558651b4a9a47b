# fiscal/services/outcome_service.py
"""
Persistência do resultado de uma tentativa de entrega.

Regras:
  - Só o dono atual do lease grava o resultado; lease perdido → resultado
    descartado (log lease-lost), o outro worker é a autoridade agora.
  - ACCEPTED/REJECTED: job DONE; documento SIGNED → SENT → final.
  - TRANSIENT: attempts+1 e next_run_at pela tabela de backoff; acima do
    limite vira FAILED com documento ERROR.
  - FATAL: attempts+1, job FAILED, documento ERROR.
  - Job e documento mudam na mesma transação.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from django.db import transaction
from django.utils import timezone

from fiscal.audit import record_event, sanitize_text
from fiscal.backoff import next_run_at
from fiscal.models import ElectronicDocument, SubmissionAudit, SubmissionJob
from fiscal.services.document_state_machine import DocumentStateMachine
from fiscal.services.job_store import JobStore
from fiscal.services.outcomes import (
    OUTCOME_ACCEPTED,
    OUTCOME_FATAL,
    OUTCOME_REJECTED,
    OUTCOME_TRANSIENT,
    HandlerOutcome,
)

logger = logging.getLogger("pdv.fiscal")


# ---------------------------------------------------------------------------
# Helpers internos
# ---------------------------------------------------------------------------

def _log_lease_lost(job: SubmissionJob, owner: str, outcome_kind: str) -> None:
    logger.warning(
        "sunat_job_lease_lost",
        extra={
            "event": "lease-lost",
            "job_id": str(job.id),
            "document_id": str(job.document_id),
            "worker": owner,
            "outcome": outcome_kind,
        },
    )


def _mark_sent(document: ElectronicDocument, *, job: SubmissionJob, owner: str, extra_fields=()) -> None:
    if document.status != ElectronicDocument.STATUS_SIGNED:
        return
    DocumentStateMachine.to_sent(
        document,
        reason="sunat_recebeu",
        extra_fields=extra_fields,
        extra_context={"job_id": str(job.id), "worker": owner},
    )
    record_event(SubmissionAudit.EVENT_SENT, document=document, job=job, actor=owner)


def _finalize_document(document: ElectronicDocument, outcome: HandlerOutcome, *, job: SubmissionJob, owner: str, now: datetime) -> None:
    _mark_sent(document, job=job, owner=owner)

    if document.status != ElectronicDocument.STATUS_SENT:
        logger.warning(
            "sunat_document_already_final",
            extra={
                "event": "sunat_document_already_final",
                "document_id": str(document.id),
                "job_id": str(job.id),
                "status_atual": document.status,
            },
        )
        return

    document.remote_code = outcome.remote_code
    document.remote_message = outcome.remote_message
    document.remote_responded_at = now
    fields = ["remote_code", "remote_message", "remote_responded_at"]
    if outcome.ack_container is not None:
        document.ack_container = outcome.ack_container
        fields.append("ack_container")

    target = (
        ElectronicDocument.STATUS_ACCEPTED
        if outcome.kind == OUTCOME_ACCEPTED
        else ElectronicDocument.STATUS_REJECTED
    )
    DocumentStateMachine.change_status(
        document,
        target,
        reason="resposta_sunat",
        extra_fields=fields,
        extra_context={"job_id": str(job.id), "remote_code": outcome.remote_code},
    )


def _fail_document(document: ElectronicDocument, *, job: SubmissionJob, reason: str) -> None:
    if document.status not in (ElectronicDocument.STATUS_SIGNED, ElectronicDocument.STATUS_SENT):
        return
    DocumentStateMachine.to_error(document, reason=reason, extra_context={"job_id": str(job.id)})


# ---------------------------------------------------------------------------
# Funções de domínio
# ---------------------------------------------------------------------------

def persist_ticket(job: SubmissionJob, owner: str, ticket: str) -> bool:
    """
    Grava o ticket assim que a SUNAT o devolve (documento → SENT), para que
    um job reagendado retome a consulta em vez de reenviar o documento.
    """
    with transaction.atomic():
        if not JobStore.holds_lease(job, owner):
            _log_lease_lost(job, owner, "ticket")
            return False

        document = ElectronicDocument.objects.select_for_update().get(id=job.document_id)
        document.remote_ticket = ticket
        if document.status == ElectronicDocument.STATUS_SIGNED:
            _mark_sent(document, job=job, owner=owner, extra_fields=["remote_ticket"])
        else:
            document.save(update_fields=["remote_ticket", "updated_at"])

    logger.info(
        "sunat_ticket_received",
        extra={
            "event": "sunat_ticket_received",
            "job_id": str(job.id),
            "document_id": str(job.document_id),
            "worker": owner,
        },
    )
    return True


def apply_outcome(
    job: SubmissionJob,
    owner: str,
    outcome: HandlerOutcome,
    *,
    now: Optional[datetime] = None,
    secrets: Iterable[str] = (),
) -> bool:
    """
    Aplica o resultado ao job e ao documento. Retorna False quando o lease
    já não pertence a `owner` (nada é gravado).
    """
    now = now or timezone.now()
    attempts = job.attempts + 1
    last_error = sanitize_text(outcome.error, secrets=secrets)

    with transaction.atomic():
        if outcome.kind in (OUTCOME_ACCEPTED, OUTCOME_REJECTED):
            changes = dict(
                status=SubmissionJob.STATUS_DONE,
                attempts=attempts,
                last_error="",
                lease_owner=None,
                lease_expires_at=None,
                completed_at=now,
                updated_at=now,
            )
            audit_event = (
                SubmissionAudit.EVENT_ACCEPTED
                if outcome.kind == OUTCOME_ACCEPTED
                else SubmissionAudit.EVENT_REJECTED
            )
        elif outcome.kind == OUTCOME_TRANSIENT and next_run_at(attempts, now) is not None:
            changes = dict(
                status=SubmissionJob.STATUS_QUEUED,
                attempts=attempts,
                last_error=last_error,
                next_run_at=next_run_at(attempts, now),
                lease_owner=None,
                lease_expires_at=None,
                updated_at=now,
            )
            audit_event = SubmissionAudit.EVENT_RETRY_SCHEDULED
        elif outcome.kind in (OUTCOME_TRANSIENT, OUTCOME_FATAL):
            changes = dict(
                status=SubmissionJob.STATUS_FAILED,
                attempts=attempts,
                last_error=last_error,
                lease_owner=None,
                lease_expires_at=None,
                completed_at=now,
                updated_at=now,
            )
            audit_event = SubmissionAudit.EVENT_FAILED_TERMINAL
        else:
            raise ValueError(f"Outcome desconhecido: {outcome.kind}")

        if not JobStore.release(job, owner, **changes):
            _log_lease_lost(job, owner, outcome.kind)
            return False

        document = ElectronicDocument.objects.select_for_update().get(id=job.document_id)

        if outcome.is_final_response:
            _finalize_document(document, outcome, job=job, owner=owner, now=now)
        elif job.status == SubmissionJob.STATUS_FAILED:
            _fail_document(document, job=job, reason=outcome.error_code or outcome.kind.lower())

        record_event(
            audit_event,
            document=document,
            job=job,
            actor=owner,
            remote_code=outcome.remote_code,
            detail={
                "attempts": attempts,
                "outcome": outcome.kind,
                "error_code": outcome.error_code,
                "error": last_error or None,
                "remote_message": outcome.remote_message,
                "notes": "; ".join(outcome.notes) if outcome.notes else None,
                "next_run_at": job.next_run_at.isoformat() if job.status == SubmissionJob.STATUS_QUEUED else None,
            },
            secrets=secrets,
        )

    logger.info(
        "sunat_job_outcome_applied",
        extra={
            "event": "sunat_job_outcome",
            "job_id": str(job.id),
            "document_id": str(job.document_id),
            "store_id": str(job.store_id),
            "worker": owner,
            "attempts": attempts,
            "outcome": outcome.kind,
            "job_status": job.status,
            "remote_code": outcome.remote_code,
        },
    )
    return True
