# fiscal/services/submission_service.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count
from django.utils import timezone

from fiscal.audit import record_event
from fiscal.exceptions import DocumentNotFoundError, InvalidStateError
from fiscal.models import ElectronicDocument, SubmissionAudit, SubmissionJob
from fiscal.services.document_state_machine import DocumentStateMachine
from fiscal.sunat_codes import KIND_TRANSIENT, get_code_table

logger = logging.getLogger("pdv.fiscal")


SIGNAL_QUEUED = "QUEUED"
SIGNAL_ALREADY_QUEUED = "ALREADY_QUEUED"
SIGNAL_ALREADY_DONE = "ALREADY_DONE"

REQUEUE_STATUSES = (
    ElectronicDocument.STATUS_SIGNED,
    ElectronicDocument.STATUS_ERROR,
    ElectronicDocument.STATUS_SENT,
)
REQUEUE_DEFAULT_LIMIT = 50
REQUEUE_MAX_LIMIT = 100
ORPHAN_SAMPLE_SIZE = 20

# Retorno da SUNAT apagado quando o documento volta para SIGNED
REMOTE_RESULT_FIELDS = (
    "remote_ticket",
    "remote_code",
    "remote_message",
    "remote_responded_at",
    "ack_container",
)


# ---------------------------------------------------------------------------
# DTO de saída
# ---------------------------------------------------------------------------

@dataclass
class EnqueueResult:
    """
    Resultado de enqueue/retry.

    signal:
      - QUEUED: job novo criado
      - ALREADY_QUEUED: já existe job QUEUED/CLAIMED (nada criado)
      - ALREADY_DONE: último job já concluído (nada criado)
    """

    job_id: str
    status: str
    signal: str
    document_id: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.signal == SIGNAL_QUEUED


@dataclass
class RequeuedJob:
    job_id: str
    document_id: str
    full_number: str
    document_status: str
    job_type: str


@dataclass
class RequeueResult:
    queued: int = 0
    skipped: int = 0
    jobs: List[RequeuedJob] = field(default_factory=list)


@dataclass
class RequeueOverview:
    """
    Documentos candidatos a reenfileiramento.

    counts: total por status (SIGNED/ERROR/SENT), com ou sem job ativo.
    orphans: amostra dos mais antigos sem job QUEUED/CLAIMED.
    """

    counts: Dict[str, int]
    orphan_total: int
    orphans: List[ElectronicDocument]


# ---------------------------------------------------------------------------
# Helpers internos
# ---------------------------------------------------------------------------

def _load_document_for_update(document_id) -> ElectronicDocument:
    try:
        return ElectronicDocument.objects.select_for_update().get(id=document_id)
    except (ElectronicDocument.DoesNotExist, ValidationError, ValueError) as exc:
        raise DocumentNotFoundError(f"Documento {document_id} não encontrado.") from exc


def _active_job(document_id) -> Optional[SubmissionJob]:
    return (
        SubmissionJob.objects.filter(document_id=document_id, status__in=SubmissionJob.ACTIVE_STATUSES)
        .order_by("-created_at")
        .first()
    )


def _latest_job(document_id) -> Optional[SubmissionJob]:
    return SubmissionJob.objects.filter(document_id=document_id).order_by("-created_at").first()


def _result_from_job(job: SubmissionJob, signal: str) -> EnqueueResult:
    return EnqueueResult(
        job_id=str(job.id),
        status=job.status,
        signal=signal,
        document_id=str(job.document_id),
    )


def _create_job(document: ElectronicDocument, *, job_type: str, now: datetime) -> SubmissionJob:
    return SubmissionJob.objects.create(
        document=document,
        store_id=document.store_id,
        job_type=job_type,
        status=SubmissionJob.STATUS_QUEUED,
        attempts=0,
        next_run_at=now,
        created_at=now,
        updated_at=now,
    )


def _reset_to_signed(document: ElectronicDocument, *, reason: str) -> None:
    for name in REMOTE_RESULT_FIELDS:
        setattr(document, name, None)
    if document.status == ElectronicDocument.STATUS_SIGNED:
        document.save(update_fields=list(REMOTE_RESULT_FIELDS) + ["updated_at"])
    else:
        DocumentStateMachine.to_signed(document, reason=reason, extra_fields=list(REMOTE_RESULT_FIELDS))


def _without_active_job(queryset):
    active = SubmissionJob.objects.filter(status__in=SubmissionJob.ACTIVE_STATUSES).values("document_id")
    return queryset.exclude(id__in=active)


def _already_queued_after_race(document_id) -> EnqueueResult:
    job = _active_job(document_id)
    if job is None:
        # A constraint disparou mas o job concorrente já saiu de QUEUED/CLAIMED
        job = _latest_job(document_id)
    if job is None:
        raise InvalidStateError("Conflito ao enfileirar documento; tente novamente.")
    logger.info(
        "sunat_enqueue_race_resolved",
        extra={"event": "sunat_enqueue_race", "document_id": str(document_id), "job_id": str(job.id)},
    )
    return _result_from_job(job, SIGNAL_ALREADY_QUEUED)


# ---------------------------------------------------------------------------
# Funções de domínio
# ---------------------------------------------------------------------------

def enqueue_document(
    document_id,
    *,
    actor: Optional[str] = None,
    job_type: str = SubmissionJob.TYPE_SEND_DOCUMENT,
    now: Optional[datetime] = None,
) -> EnqueueResult:
    """
    Enfileira o documento para entrega à SUNAT.

    Regras:
      1. Job QUEUED/CLAIMED existente → ALREADY_QUEUED (nada criado).
      2. Último job DONE → ALREADY_DONE (nada criado).
      3. Documento precisa estar SIGNED, senão InvalidStateError.
      4. Cria job QUEUED, attempts=0, next_run_at=agora + auditoria "queued".
      5. Corrida entre dois enqueue simultâneos é resolvida pela constraint
         parcial: quem perde recebe ALREADY_QUEUED.
    """
    now = now or timezone.now()

    try:
        with transaction.atomic():
            document = _load_document_for_update(document_id)

            active = _active_job(document.id)
            if active is not None:
                return _result_from_job(active, SIGNAL_ALREADY_QUEUED)

            latest = _latest_job(document.id)
            if latest is not None and latest.status == SubmissionJob.STATUS_DONE:
                return _result_from_job(latest, SIGNAL_ALREADY_DONE)

            if document.status != ElectronicDocument.STATUS_SIGNED:
                raise InvalidStateError(
                    f"Documento precisa estar SIGNED para envio (status atual: {document.status}).",
                    current_status=document.status,
                )

            job = _create_job(document, job_type=job_type, now=now)
            record_event(
                SubmissionAudit.EVENT_QUEUED,
                document=document,
                job=job,
                actor=actor,
                detail={"job_type": job_type},
            )
    except IntegrityError:
        return _already_queued_after_race(document_id)

    logger.info(
        "sunat_document_queued",
        extra={
            "event": "sunat_document_queued",
            "document_id": str(document.id),
            "store_id": str(document.store_id),
            "job_id": str(job.id),
            "job_type": job_type,
        },
    )
    return _result_from_job(job, SIGNAL_QUEUED)


def _retry_allowed(document: ElectronicDocument, latest: Optional[SubmissionJob]) -> bool:
    if document.status == ElectronicDocument.STATUS_ERROR:
        return True
    if document.status == ElectronicDocument.STATUS_REJECTED:
        # Só rechazo com código classificado como transitório
        return bool(document.remote_code) and get_code_table().lookup(document.remote_code).kind == KIND_TRANSIENT
    if latest is not None and latest.status == SubmissionJob.STATUS_FAILED:
        return document.status == ElectronicDocument.STATUS_SIGNED
    return False


def retry_document(
    document_id,
    *,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EnqueueResult:
    """
    Reprocesso manual de um documento.

    Regras:
      - Job QUEUED/CLAIMED existente → InvalidStateError (409).
      - Permitido para documento ERROR, último job FAILED, ou REJECTED
        cujo remote_code é transitório.
      - Documento volta para SIGNED (ticket/retorno anteriores limpos) e um
        job novo nasce com attempts=0. Auditoria "retry-requested".
    """
    now = now or timezone.now()

    try:
        with transaction.atomic():
            document = _load_document_for_update(document_id)

            if _active_job(document.id) is not None:
                raise InvalidStateError(
                    "Documento já possui envio em andamento.",
                    current_status=document.status,
                )

            latest = _latest_job(document.id)
            if not _retry_allowed(document, latest):
                raise InvalidStateError(
                    f"Reprocesso não permitido para documento em {document.status}.",
                    current_status=document.status,
                )

            previous_status = document.status
            previous_code = document.remote_code

            _reset_to_signed(document, reason="retry_manual")

            job = _create_job(document, job_type=latest.job_type if latest else SubmissionJob.TYPE_SEND_DOCUMENT, now=now)
            record_event(
                SubmissionAudit.EVENT_RETRY_REQUESTED,
                document=document,
                job=job,
                actor=actor,
                remote_code=previous_code,
                detail={
                    "status_anterior": previous_status,
                    "job_anterior": str(latest.id) if latest else None,
                },
            )
    except IntegrityError as exc:
        raise InvalidStateError("Documento já possui envio em andamento.") from exc

    logger.info(
        "sunat_document_retry_requested",
        extra={
            "event": "sunat_document_retry",
            "document_id": str(document.id),
            "job_id": str(job.id),
            "status_anterior": previous_status,
        },
    )
    return _result_from_job(job, SIGNAL_QUEUED)


def _requeue_one(
    document_id,
    *,
    statuses: Tuple[str, ...],
    actor: Optional[str],
    now: datetime,
) -> Optional[Tuple[ElectronicDocument, SubmissionJob]]:
    try:
        with transaction.atomic():
            document = _load_document_for_update(document_id)
            if document.status not in statuses or _active_job(document.id) is not None:
                return None

            latest = _latest_job(document.id)
            previous_status = document.status
            if document.status == ElectronicDocument.STATUS_ERROR:
                _reset_to_signed(document, reason="requeue_admin")

            job_type = latest.job_type if latest else SubmissionJob.TYPE_SEND_DOCUMENT
            job = _create_job(document, job_type=job_type, now=now)
            record_event(
                SubmissionAudit.EVENT_REQUEUED,
                document=document,
                job=job,
                actor=actor,
                detail={
                    "status_anterior": previous_status,
                    "job_anterior": str(latest.id) if latest else None,
                    "consulta_ticket": bool(document.remote_ticket),
                },
            )
    except IntegrityError:
        # Outro enqueue criou o job ativo entre a leitura e o insert
        return None
    return document, job


def requeue_documents(
    *,
    document_id=None,
    status: Optional[str] = None,
    store_id=None,
    limit: int = REQUEUE_DEFAULT_LIMIT,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RequeueResult:
    """
    Reenfileiramento administrativo de documentos que ficaram sem job.

    Regras:
      - Só SIGNED, ERROR ou SENT (`status` restringe a um deles).
      - Mais antigos primeiro, até `limit` documentos (1..100).
      - Documento com job QUEUED/CLAIMED conta como skipped.
      - ERROR volta para SIGNED com o retorno anterior limpo.
      - SENT mantém status e ticket; com ticket o handler só consulta o
        getStatus, sem reenviar o documento.
      - Cada job novo nasce com attempts=0 e auditoria "requeued".
    """
    if status is not None and status not in REQUEUE_STATUSES:
        raise ValueError(f"Status {status} não pode ser reenfileirado.")
    if not 1 <= limit <= REQUEUE_MAX_LIMIT:
        raise ValueError(f"limit deve estar entre 1 e {REQUEUE_MAX_LIMIT}.")

    now = now or timezone.now()
    statuses = (status,) if status else REQUEUE_STATUSES

    queryset = ElectronicDocument.objects.filter(status__in=statuses)
    if document_id is not None:
        queryset = queryset.filter(id=document_id)
    if store_id is not None:
        queryset = queryset.filter(store_id=store_id)
    candidates = list(queryset.order_by("created_at", "id").values_list("id", flat=True)[:limit])

    result = RequeueResult()
    for candidate_id in candidates:
        requeued = _requeue_one(candidate_id, statuses=statuses, actor=actor, now=now)
        if requeued is None:
            result.skipped += 1
            continue

        document, job = requeued
        result.queued += 1
        result.jobs.append(
            RequeuedJob(
                job_id=str(job.id),
                document_id=str(document.id),
                full_number=document.full_number,
                document_status=document.status,
                job_type=job.job_type,
            )
        )

    logger.info(
        "sunat_documents_requeued",
        extra={
            "event": "sunat_documents_requeued",
            "actor": actor,
            "status_filter": status,
            "store_id": str(store_id) if store_id else None,
            "queued": result.queued,
            "skipped": result.skipped,
        },
    )
    return result


def requeue_overview(*, store_id=None) -> RequeueOverview:
    queryset = ElectronicDocument.objects.filter(status__in=REQUEUE_STATUSES)
    if store_id is not None:
        queryset = queryset.filter(store_id=store_id)

    counts = {name: 0 for name in REQUEUE_STATUSES}
    for row in queryset.order_by().values("status").annotate(total=Count("id")):
        counts[row["status"]] = row["total"]

    orphans = _without_active_job(queryset).order_by("created_at", "id")
    return RequeueOverview(
        counts=counts,
        orphan_total=orphans.count(),
        orphans=list(orphans[:ORPHAN_SAMPLE_SIZE]),
    )


def get_document_status(document_id) -> Tuple[ElectronicDocument, Optional[SubmissionJob]]:
    """
    Documento + job mais recente, para consulta de status.
    """
    try:
        document = ElectronicDocument.objects.get(id=document_id)
    except (ElectronicDocument.DoesNotExist, ValidationError, ValueError) as exc:
        raise DocumentNotFoundError(f"Documento {document_id} não encontrado.") from exc
    return document, _latest_job(document.id)
