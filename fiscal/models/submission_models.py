import uuid
from django.db import models
from django.db.models import Q
from django.utils import timezone


class SubmissionJob(models.Model):
    """
    Unidade de trabalho persistida: "entregar este documento à SUNAT".

    - Reivindicado por um worker via lease (lease_owner + lease_expires_at).
    - No máximo um job QUEUED/CLAIMED por documento (constraint parcial).
    - Toda mutação vinda do worker é compare-and-set sobre o estado lido.
    """

    STATUS_QUEUED = "QUEUED"
    STATUS_CLAIMED = "CLAIMED"
    STATUS_DONE = "DONE"
    STATUS_FAILED = "FAILED"
    STATUS_CHOICES = (
        (STATUS_QUEUED, "Na fila"),
        (STATUS_CLAIMED, "Em processamento"),
        (STATUS_DONE, "Concluído"),
        (STATUS_FAILED, "Falhou"),
    )
    ACTIVE_STATUSES = (STATUS_QUEUED, STATUS_CLAIMED)
    TERMINAL_STATUSES = (STATUS_DONE, STATUS_FAILED)

    TYPE_SEND_DOCUMENT = "SEND_DOCUMENT"
    TYPE_SEND_SUMMARY = "SEND_SUMMARY"
    TYPE_CHOICES = (
        (TYPE_SEND_DOCUMENT, "Envio de comprobante (sendBill)"),
        (TYPE_SEND_SUMMARY, "Envio de resumo (sendSummary)"),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    document = models.ForeignKey(
        "fiscal.ElectronicDocument",
        on_delete=models.PROTECT,
        related_name="submission_jobs",
    )
    store_id = models.UUIDField()

    job_type = models.CharField(max_length=16, choices=TYPE_CHOICES, default=TYPE_SEND_DOCUMENT)
    status = models.CharField(max_length=8, choices=STATUS_CHOICES, default=STATUS_QUEUED)

    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True, default="")
    next_run_at = models.DateTimeField(default=timezone.now)

    lease_owner = models.CharField(max_length=128, blank=True, null=True)
    lease_expires_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = "sunat_submission_job"
        constraints = [
            models.UniqueConstraint(
                fields=["document"],
                condition=Q(status__in=["QUEUED", "CLAIMED"]),
                name="uniq_active_job_per_document",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "next_run_at"], name="sunat_job_status_next_idx"),
            models.Index(fields=["status", "lease_expires_at"], name="sunat_job_status_lease_idx"),
            models.Index(fields=["store_id"], name="sunat_job_store_idx"),
        ]

    def __str__(self):
        return f"Job {self.job_type} doc={self.document_id} [{self.status}] tentativas={self.attempts}"

    def is_lease_expired(self, now=None) -> bool:
        """
        CLAIMED com lease vencido conta como não reivindicado.
        """
        if self.status != self.STATUS_CLAIMED or self.lease_expires_at is None:
            return False
        return self.lease_expires_at < (now or timezone.now())


class SubmissionAudit(models.Model):
    """
    Trilha de auditoria do pipeline de envio.

    Exemplos de event:
      - queued / claimed / sent
      - accepted / rejected
      - retry-scheduled / failed-terminal / retry-requested
      - requeued (reenfileiramento administrativo)

    Referências por UUID (não FK): a auditoria sobrevive à limpeza de jobs.
    """

    EVENT_QUEUED = "queued"
    EVENT_CLAIMED = "claimed"
    EVENT_SENT = "sent"
    EVENT_ACCEPTED = "accepted"
    EVENT_REJECTED = "rejected"
    EVENT_RETRY_SCHEDULED = "retry-scheduled"
    EVENT_FAILED_TERMINAL = "failed-terminal"
    EVENT_RETRY_REQUESTED = "retry-requested"
    EVENT_REQUEUED = "requeued"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    event = models.CharField(max_length=32)

    document_id = models.UUIDField(blank=True, null=True)
    job_id = models.UUIDField(blank=True, null=True)
    store_id = models.UUIDField(blank=True, null=True)

    actor = models.CharField(max_length=128, blank=True, default="")

    remote_code = models.CharField(max_length=10, blank=True, null=True)
    detail = models.JSONField(blank=True, default=dict)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "sunat_submission_audit"
        indexes = [
            models.Index(fields=["document_id"], name="sunat_audit_document_idx"),
            models.Index(fields=["job_id"], name="sunat_audit_job_idx"),
            models.Index(fields=["event"], name="sunat_audit_event_idx"),
        ]

    def __str__(self):
        return f"[{self.event}] doc={self.document_id} job={self.job_id} codigo={self.remote_code}"
