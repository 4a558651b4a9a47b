# conftest.py (na raiz do projeto)

import hashlib
import itertools
import uuid

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from fiscal.conf import get_submission_config
from fiscal.credentials import ENV_SOL_PASS, ENV_SOL_USER
from fiscal.models import ElectronicDocument, SubmissionJob, SunatStoreConfig
from fiscal.services.job_handler import SubmissionJobHandler
from fiscal.tests.helpers import FakeSunatClient, InlineExecutor
from fiscal.worker import SubmissionWorker


TEST_RUC = "20123456789"
TEST_SOL_USER = "MODDATOS"
TEST_SOL_PASSWORD = "s3nh4-s0l-secreta"


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def _sem_credenciais_de_ambiente(monkeypatch):
    """
    Credenciais SOL de ambiente têm precedência; os testes partem sem elas.
    """
    monkeypatch.delenv(ENV_SOL_USER, raising=False)
    monkeypatch.delenv(ENV_SOL_PASS, raising=False)


@pytest.fixture
def store_id():
    return uuid.uuid4()


@pytest.fixture
def store_config(db, store_id):
    return SunatStoreConfig.objects.create(
        store_id=store_id,
        ruc=TEST_RUC,
        business_name="Bodega Test SAC",
        environment=SunatStoreConfig.ENV_BETA,
        enabled=True,
        sol_user=TEST_SOL_USER,
        sol_password=TEST_SOL_PASSWORD,
    )


@pytest.fixture
def signed_document_factory(db, store_config):
    """
    Cria ElectronicDocument já SIGNED (ou no status pedido).
    """
    counter = itertools.count(1)

    def _create(**overrides):
        number = overrides.pop("number", next(counter))
        body = overrides.pop("signed_body", f"<Invoice><ID>F001-{number}</ID></Invoice>".encode())
        data = {
            "store_id": store_config.store_id,
            "doc_type": ElectronicDocument.TYPE_INVOICE_A,
            "series": "F001",
            "number": number,
            "customer_doc_type": "6",
            "customer_doc_number": "20600000001",
            "customer_name": "Cliente Prueba SAC",
            "currency": "PEN",
            "taxable_amount": "100.00",
            "tax_amount": "18.00",
            "total_amount": "118.00",
            "signed_body": body,
            "hash": hashlib.sha256(body).hexdigest() if body else "",
            "status": ElectronicDocument.STATUS_SIGNED,
        }
        data.update(overrides)
        return ElectronicDocument.objects.create(**data)

    return _create


@pytest.fixture
def job_factory(db):
    def _create(document, **overrides):
        data = {
            "document": document,
            "store_id": document.store_id,
            "job_type": SubmissionJob.TYPE_SEND_DOCUMENT,
            "status": SubmissionJob.STATUS_QUEUED,
            "attempts": 0,
        }
        data.update(overrides)
        return SubmissionJob.objects.create(**data)

    return _create


@pytest.fixture
def fake_sunat_client():
    return FakeSunatClient()


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def handler_factory(fake_sunat_client):
    def _build(**kwargs):
        kwargs.setdefault("client_factory", lambda _config: fake_sunat_client)
        kwargs.setdefault("sleep", lambda _seconds: None)
        return SubmissionJobHandler(**kwargs)

    return _build


@pytest.fixture
def worker_factory(handler_factory, inline_executor):
    def _build(worker_id="worker-teste", **kwargs):
        kwargs.setdefault("handler", handler_factory())
        kwargs.setdefault("executor", inline_executor)
        kwargs.setdefault("config", get_submission_config())
        return SubmissionWorker(worker_id=worker_id, **kwargs)

    return _build


@pytest.fixture
def api_user(db):
    User = get_user_model()
    return User.objects.create_user(username="operador", password="senha-forte-123")


@pytest.fixture
def api_client(api_user):
    client = APIClient()
    client.force_authenticate(user=api_user)
    return client


@pytest.fixture
def admin_user(db):
    User = get_user_model()
    return User.objects.create_user(username="supervisor", password="senha-forte-123", is_staff=True)


@pytest.fixture
def admin_client(admin_user):
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client
