import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ElectronicDocument",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("store_id", models.UUIDField()),
                (
                    "doc_type",
                    models.CharField(
                        choices=[
                            ("INVOICE_A", "Factura (01)"),
                            ("INVOICE_B", "Boleta de venta (03)"),
                            ("CREDIT_NOTE", "Nota de crédito (07)"),
                            ("DEBIT_NOTE", "Nota de débito (08)"),
                        ],
                        max_length=16,
                    ),
                ),
                ("series", models.CharField(max_length=4)),
                ("number", models.PositiveIntegerField()),
                ("full_number", models.CharField(editable=False, max_length=16)),
                ("issue_date", models.DateField(default=django.utils.timezone.localdate)),
                ("customer_doc_type", models.CharField(blank=True, default="", max_length=2)),
                ("customer_doc_number", models.CharField(blank=True, default="", max_length=20)),
                ("customer_name", models.CharField(blank=True, default="", max_length=200)),
                ("currency", models.CharField(default="PEN", max_length=3)),
                ("taxable_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("tax_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("total_amount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("signed_body", models.BinaryField(blank=True, null=True)),
                ("hash", models.CharField(blank=True, default="", max_length=128)),
                ("ack_container", models.BinaryField(blank=True, null=True)),
                ("remote_code", models.CharField(blank=True, max_length=10, null=True)),
                ("remote_message", models.TextField(blank=True, null=True)),
                ("remote_ticket", models.CharField(blank=True, max_length=64, null=True)),
                ("remote_responded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("DRAFT", "Rascunho"),
                            ("PENDING", "Pendente de assinatura"),
                            ("SIGNED", "Assinado"),
                            ("SENT", "Enviado"),
                            ("ACCEPTED", "Aceito"),
                            ("REJECTED", "Rejeitado"),
                            ("ERROR", "Erro"),
                        ],
                        default="DRAFT",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "sunat_electronic_document",
                "indexes": [models.Index(fields=["store_id", "status"], name="sunat_doc_store_status_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("store_id", "series", "number"),
                        name="uniq_document_store_series_number",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="SubmissionAudit",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("event", models.CharField(max_length=32)),
                ("document_id", models.UUIDField(blank=True, null=True)),
                ("job_id", models.UUIDField(blank=True, null=True)),
                ("store_id", models.UUIDField(blank=True, null=True)),
                ("actor", models.CharField(blank=True, default="", max_length=128)),
                ("remote_code", models.CharField(blank=True, max_length=10, null=True)),
                ("detail", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "sunat_submission_audit",
                "indexes": [
                    models.Index(fields=["document_id"], name="sunat_audit_document_idx"),
                    models.Index(fields=["job_id"], name="sunat_audit_job_idx"),
                    models.Index(fields=["event"], name="sunat_audit_event_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SunatStoreConfig",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("store_id", models.UUIDField(unique=True)),
                ("ruc", models.CharField(help_text="RUC do emissor (11 dígitos).", max_length=11)),
                ("business_name", models.CharField(blank=True, default="", max_length=200)),
                (
                    "environment",
                    models.CharField(
                        choices=[("BETA", "Beta (homologação)"), ("PROD", "Produção")],
                        default="BETA",
                        max_length=4,
                    ),
                ),
                ("enabled", models.BooleanField(default=True)),
                ("sol_user", models.CharField(blank=True, default="", max_length=64)),
                ("sol_password", models.CharField(blank=True, default="", max_length=128)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "sunat_store_config",
            },
        ),
        migrations.CreateModel(
            name="SubmissionJob",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("store_id", models.UUIDField()),
                (
                    "job_type",
                    models.CharField(
                        choices=[
                            ("SEND_DOCUMENT", "Envio de comprobante (sendBill)"),
                            ("SEND_SUMMARY", "Envio de resumo (sendSummary)"),
                        ],
                        default="SEND_DOCUMENT",
                        max_length=16,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("QUEUED", "Na fila"),
                            ("CLAIMED", "Em processamento"),
                            ("DONE", "Concluído"),
                            ("FAILED", "Falhou"),
                        ],
                        default="QUEUED",
                        max_length=8,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_error", models.TextField(blank=True, default="")),
                ("next_run_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("lease_owner", models.CharField(blank=True, max_length=128, null=True)),
                ("lease_expires_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "document",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="submission_jobs",
                        to="fiscal.electronicdocument",
                    ),
                ),
            ],
            options={
                "db_table": "sunat_submission_job",
                "indexes": [
                    models.Index(fields=["status", "next_run_at"], name="sunat_job_status_next_idx"),
                    models.Index(fields=["status", "lease_expires_at"], name="sunat_job_status_lease_idx"),
                    models.Index(fields=["store_id"], name="sunat_job_store_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["QUEUED", "CLAIMED"])),
                        fields=("document",),
                        name="uniq_active_job_per_document",
                    )
                ],
            },
        ),
    ]
