import uuid
from django.db import models
from django.utils import timezone


class SunatStoreConfig(models.Model):
    """
    Configuração SUNAT por loja: RUC, ambiente e credenciais SOL.

    As credenciais de ambiente (SUNAT_SOL_USER / SUNAT_SOL_PASS) têm
    precedência sobre as gravadas aqui. sol_password nunca é serializado
    nem logado.
    """

    ENV_BETA = "BETA"
    ENV_PROD = "PROD"
    ENV_CHOICES = (
        (ENV_BETA, "Beta (homologação)"),
        (ENV_PROD, "Produção"),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    store_id = models.UUIDField(unique=True)

    ruc = models.CharField(max_length=11, help_text="RUC do emissor (11 dígitos).")
    business_name = models.CharField(max_length=200, blank=True, default="")

    environment = models.CharField(max_length=4, choices=ENV_CHOICES, default=ENV_BETA)
    enabled = models.BooleanField(default=True)

    sol_user = models.CharField(max_length=64, blank=True, default="")
    sol_password = models.CharField(max_length=128, blank=True, default="")

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "sunat_store_config"

    def __str__(self):
        return f"SUNAT {self.ruc} ({self.environment}) store={self.store_id}"
