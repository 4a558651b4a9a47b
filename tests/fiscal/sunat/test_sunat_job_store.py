import logging
from datetime import timedelta

import pytest
from django.utils import timezone

from fiscal.models import ElectronicDocument, SubmissionJob
from fiscal.services.job_store import JobStore
from fiscal.services.outcome_service import apply_outcome
from fiscal.services.outcomes import HandlerOutcome


@pytest.mark.django_db
def test_find_claimable_respeita_next_run_at(signed_document_factory, job_factory):
    now = timezone.now()
    vencido = job_factory(signed_document_factory(), next_run_at=now - timedelta(seconds=1))
    job_factory(signed_document_factory(), next_run_at=now + timedelta(minutes=5))

    found = JobStore.find_claimable(now, limit=10)

    assert [j.id for j in found] == [vencido.id]


@pytest.mark.django_db
def test_find_claimable_inclui_lease_expirado(signed_document_factory, job_factory):
    now = timezone.now()
    expirado = job_factory(
        signed_document_factory(),
        status=SubmissionJob.STATUS_CLAIMED,
        lease_owner="morto",
        lease_expires_at=now - timedelta(seconds=1),
    )
    job_factory(
        signed_document_factory(),
        status=SubmissionJob.STATUS_CLAIMED,
        lease_owner="vivo",
        lease_expires_at=now + timedelta(minutes=5),
    )

    found = JobStore.find_claimable(now, limit=10)

    assert [j.id for j in found] == [expirado.id]
    assert found[0].is_lease_expired(now) is True


@pytest.mark.django_db
def test_find_claimable_sem_vagas(signed_document_factory, job_factory):
    job_factory(signed_document_factory())
    assert JobStore.find_claimable(timezone.now(), limit=0) == []


@pytest.mark.django_db
def test_claim_concorrente_so_um_vence(signed_document_factory, job_factory):
    job = job_factory(signed_document_factory())
    now = timezone.now()
    copia_a = SubmissionJob.objects.get(id=job.id)
    copia_b = SubmissionJob.objects.get(id=job.id)

    assert JobStore.claim(copia_a, "worker-a", now, 300) is True
    assert JobStore.claim(copia_b, "worker-b", now, 300) is False

    job.refresh_from_db()
    assert job.status == SubmissionJob.STATUS_CLAIMED
    assert job.lease_owner == "worker-a"
    assert job.lease_expires_at == now + timedelta(seconds=300)


@pytest.mark.django_db
def test_lease_expirado_pode_ser_reivindicado_por_outro_worker(signed_document_factory, job_factory):
    job = job_factory(signed_document_factory())
    t0 = timezone.now()
    assert JobStore.claim(job, "worker-a", t0, 60) is True

    depois = t0 + timedelta(seconds=61)
    [expirado] = JobStore.find_claimable(depois, limit=5)

    assert JobStore.claim(expirado, "worker-b", depois, 60) is True
    job.refresh_from_db()
    assert job.lease_owner == "worker-b"


@pytest.mark.django_db
def test_resultado_de_lease_perdido_e_descartado(signed_document_factory, job_factory, caplog):
    caplog.set_level(logging.INFO, logger="pdv.fiscal")
    doc = signed_document_factory()
    job = job_factory(doc)
    t0 = timezone.now()

    job_a = SubmissionJob.objects.get(id=job.id)
    assert JobStore.claim(job_a, "worker-a", t0, 60) is True

    # worker-a travou; o lease expira e worker-b assume
    job_b = SubmissionJob.objects.get(id=job.id)
    assert JobStore.claim(job_b, "worker-b", t0 + timedelta(seconds=120), 60) is True

    applied = apply_outcome(job_a, "worker-a", HandlerOutcome.accepted("0", "Aceptada"))

    assert applied is False
    job.refresh_from_db()
    doc.refresh_from_db()
    assert job.status == SubmissionJob.STATUS_CLAIMED
    assert job.lease_owner == "worker-b"
    assert job.attempts == 0
    assert doc.status == ElectronicDocument.STATUS_SIGNED
    assert any(getattr(r, "event", None) == "lease-lost" for r in caplog.records)


@pytest.mark.django_db
def test_counts_by_status(signed_document_factory, job_factory):
    job_factory(signed_document_factory())
    job_factory(signed_document_factory(), status=SubmissionJob.STATUS_DONE)
    job_factory(signed_document_factory(), status=SubmissionJob.STATUS_DONE)

    counts = JobStore.counts_by_status()

    assert counts[SubmissionJob.STATUS_QUEUED] == 1
    assert counts[SubmissionJob.STATUS_DONE] == 2
    assert counts[SubmissionJob.STATUS_FAILED] == 0
