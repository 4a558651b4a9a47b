import uuid
from django.db import models
from django.utils import timezone

from fiscal.exceptions import InvalidStateError


class ElectronicDocument(models.Model):
    """
    Comprobante eletrônico (factura, boleta, nota de crédito/débito) a ser
    entregue à SUNAT.

    - Um registro por combinação (loja, série, número).
    - O snapshot fiscal (cliente, valores, data) e o XML assinado ficam
      congelados depois que o documento sai de DRAFT/PENDING.
    - status só deve ser alterado via DocumentStateMachine.
    """

    STATUS_DRAFT = "DRAFT"
    STATUS_PENDING = "PENDING"
    STATUS_SIGNED = "SIGNED"
    STATUS_SENT = "SENT"
    STATUS_ACCEPTED = "ACCEPTED"
    STATUS_REJECTED = "REJECTED"
    STATUS_ERROR = "ERROR"
    STATUS_CHOICES = (
        (STATUS_DRAFT, "Rascunho"),
        (STATUS_PENDING, "Pendente de assinatura"),
        (STATUS_SIGNED, "Assinado"),
        (STATUS_SENT, "Enviado"),
        (STATUS_ACCEPTED, "Aceito"),
        (STATUS_REJECTED, "Rejeitado"),
        (STATUS_ERROR, "Erro"),
    )

    TYPE_INVOICE_A = "INVOICE_A"
    TYPE_INVOICE_B = "INVOICE_B"
    TYPE_CREDIT_NOTE = "CREDIT_NOTE"
    TYPE_DEBIT_NOTE = "DEBIT_NOTE"
    TYPE_CHOICES = (
        (TYPE_INVOICE_A, "Factura (01)"),
        (TYPE_INVOICE_B, "Boleta de venta (03)"),
        (TYPE_CREDIT_NOTE, "Nota de crédito (07)"),
        (TYPE_DEBIT_NOTE, "Nota de débito (08)"),
    )

    # Catálogo 01 da SUNAT
    SUNAT_TYPE_CODES = {
        TYPE_INVOICE_A: "01",
        TYPE_INVOICE_B: "03",
        TYPE_CREDIT_NOTE: "07",
        TYPE_DEBIT_NOTE: "08",
    }

    # Campos congelados após a assinatura
    SNAPSHOT_FIELDS = (
        "doc_type",
        "series",
        "number",
        "issue_date",
        "customer_doc_type",
        "customer_doc_number",
        "customer_name",
        "currency",
        "taxable_amount",
        "tax_amount",
        "total_amount",
        "signed_body",
        "hash",
    )
    MUTABLE_SNAPSHOT_STATUSES = {STATUS_DRAFT, STATUS_PENDING}

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Loja emissora (não FK: a loja vive fora deste serviço)
    store_id = models.UUIDField()

    doc_type = models.CharField(max_length=16, choices=TYPE_CHOICES)
    series = models.CharField(max_length=4)
    number = models.PositiveIntegerField()
    full_number = models.CharField(max_length=16, editable=False)

    issue_date = models.DateField(default=timezone.localdate)

    # Snapshot do cliente / valores
    customer_doc_type = models.CharField(max_length=2, blank=True, default="")
    customer_doc_number = models.CharField(max_length=20, blank=True, default="")
    customer_name = models.CharField(max_length=200, blank=True, default="")
    currency = models.CharField(max_length=3, default="PEN")
    taxable_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    tax_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)

    # Artefatos
    signed_body = models.BinaryField(null=True, blank=True)
    hash = models.CharField(max_length=128, blank=True, default="")
    ack_container = models.BinaryField(null=True, blank=True)

    # Retorno da SUNAT
    remote_code = models.CharField(max_length=10, blank=True, null=True)
    remote_message = models.TextField(blank=True, null=True)
    remote_ticket = models.CharField(max_length=64, blank=True, null=True)
    remote_responded_at = models.DateTimeField(null=True, blank=True)

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_DRAFT)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "sunat_electronic_document"
        constraints = [
            models.UniqueConstraint(
                fields=["store_id", "series", "number"],
                name="uniq_document_store_series_number",
            ),
        ]
        indexes = [
            models.Index(fields=["store_id", "status"], name="sunat_doc_store_status_idx"),
        ]

    def __str__(self):
        return f"{self.doc_type} {self.full_number} ({self.status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_status = instance.__dict__.get("status")
        instance._loaded_snapshot = {
            name: instance.__dict__[name]
            for name in cls.SNAPSHOT_FIELDS
            if name in instance.__dict__
        }
        return instance

    @property
    def sunat_type_code(self) -> str:
        return self.SUNAT_TYPE_CODES[self.doc_type]

    def filename_stem(self, ruc: str) -> str:
        """
        {RUC}-{TIPO}-{SERIE}-{NUMERO com 8 dígitos}, sem extensão.
        """
        return f"{ruc}-{self.sunat_type_code}-{self.series}-{str(self.number).zfill(8)}"

    def _changed_snapshot_fields(self) -> list[str]:
        loaded = getattr(self, "_loaded_snapshot", None) or {}
        changed = []
        for name, original in loaded.items():
            current = getattr(self, name)
            if isinstance(original, memoryview):
                original = original.tobytes()
            if isinstance(current, memoryview):
                current = current.tobytes()
            if current != original:
                changed.append(name)
        return changed

    def save(self, *args, **kwargs):
        loaded_status = getattr(self, "_loaded_status", None)
        if loaded_status and loaded_status not in self.MUTABLE_SNAPSHOT_STATUSES:
            changed = self._changed_snapshot_fields()
            if changed:
                raise InvalidStateError(
                    f"Snapshot do documento é imutável após assinatura (campos: {', '.join(changed)}).",
                    current_status=loaded_status,
                )

        self.full_number = f"{self.series}-{self.number}"
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "full_number" not in update_fields:
            kwargs["update_fields"] = list(update_fields) + ["full_number"]

        super().save(*args, **kwargs)

        self._loaded_status = self.status
        self._loaded_snapshot = {name: getattr(self, name) for name in self.SNAPSHOT_FIELDS}
