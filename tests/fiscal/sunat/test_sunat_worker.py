import logging
import threading
import time
from datetime import timedelta

import pytest
from django.db import DatabaseError
from django.utils import timezone

from fiscal.conf import SubmissionConfig
from fiscal.models import SubmissionAudit, SubmissionJob
from fiscal.services.job_store import JobStore
from fiscal.services.outcomes import HandlerOutcome
from fiscal.services.submission_service import enqueue_document
from fiscal.worker import DaemonThreadExecutor, SubmissionWorker


@pytest.mark.django_db
def test_run_once_respeita_vagas_livres(signed_document_factory, worker_factory, inline_executor):
    now = timezone.now()
    for _ in range(3):
        enqueue_document(signed_document_factory().id, now=now)
    worker = worker_factory(config=SubmissionConfig(concurrency=2))

    dispatched = worker.run_once(now=now)

    assert dispatched == 2
    assert inline_executor.submitted == 2
    assert SubmissionJob.objects.filter(status=SubmissionJob.STATUS_DONE).count() == 2
    assert SubmissionJob.objects.filter(status=SubmissionJob.STATUS_QUEUED).count() == 1
    assert worker.free_slots() == 2


@pytest.mark.django_db
def test_run_once_sem_jobs(worker_factory):
    assert worker_factory().run_once() == 0


@pytest.mark.django_db
def test_worker_parado_nao_reivindica(signed_document_factory, worker_factory, fake_sunat_client):
    result = enqueue_document(signed_document_factory().id)
    worker = worker_factory()

    worker.request_stop()

    assert worker.stopping is True
    assert worker.run_once() == 0
    assert SubmissionJob.objects.get(id=result.job_id).status == SubmissionJob.STATUS_QUEUED
    assert fake_sunat_client.calls == []


@pytest.mark.django_db
def test_shutdown_sem_tarefas_pendentes(worker_factory):
    worker = worker_factory()
    assert worker.shutdown() == 0
    assert worker.stopping is True


@pytest.mark.django_db
def test_claim_de_lease_expirado_registra_auditoria(signed_document_factory, job_factory, worker_factory):
    now = timezone.now()
    job = job_factory(
        signed_document_factory(),
        status=SubmissionJob.STATUS_CLAIMED,
        lease_owner="worker-morto",
        lease_expires_at=now - timedelta(seconds=5),
    )

    worker_factory(worker_id="worker-novo", clock=lambda: now).run_once(now=now)

    claimed = SubmissionAudit.objects.get(job_id=job.id, event=SubmissionAudit.EVENT_CLAIMED)
    assert claimed.actor == "worker-novo"
    assert claimed.detail["lease_expirado"] is True
    job.refresh_from_db()
    assert job.status == SubmissionJob.STATUS_DONE


@pytest.mark.django_db
def test_dois_workers_nao_processam_o_mesmo_job(signed_document_factory, worker_factory, fake_sunat_client):
    now = timezone.now()
    enqueue_document(signed_document_factory().id, now=now)

    primeiro = worker_factory(worker_id="w1", clock=lambda: now).run_once(now=now)
    segundo = worker_factory(worker_id="w2", clock=lambda: now).run_once(now=now)

    assert (primeiro, segundo) == (1, 0)
    assert len(fake_sunat_client.calls_of("submit")) == 1


@pytest.mark.django_db
def test_health_check_registra_contagens(signed_document_factory, worker_factory, caplog):
    caplog.set_level(logging.INFO, logger="pdv.fiscal")
    enqueue_document(signed_document_factory().id, now=timezone.now() + timedelta(hours=1))

    assert worker_factory().health_check() is True

    [record] = [r for r in caplog.records if getattr(r, "event", None) == "sunat_worker_health"]
    assert record.queued == 1
    assert record.in_flight == 0


@pytest.mark.django_db
def test_health_check_degradado_quando_banco_falha(worker_factory, monkeypatch, caplog):
    def _falha():
        raise DatabaseError("conexão perdida")

    monkeypatch.setattr(JobStore, "counts_by_status", staticmethod(_falha))

    assert worker_factory().health_check() is False
    assert any(getattr(r, "event", None) == "sunat_worker_health_degraded" for r in caplog.records)


@pytest.mark.django_db
def test_health_check_respeita_intervalo(worker_factory):
    worker = worker_factory(config=SubmissionConfig(health_check_interval_seconds=60))
    now = timezone.now()

    assert worker.maybe_health_check(now) is True
    assert worker.maybe_health_check(now + timedelta(seconds=10)) is False
    assert worker.maybe_health_check(now + timedelta(seconds=61)) is True


# -------------------------------------------------------------------
# Pool de threads daemon
# -------------------------------------------------------------------


def test_executor_roda_tarefas_em_threads_daemon():
    executor = DaemonThreadExecutor(2)
    try:
        assert len(executor.threads) == 2
        assert all(thread.daemon for thread in executor.threads)
        assert executor.submit(lambda valor: valor * 2, 21).result(timeout=5) == 42
    finally:
        executor.shutdown(wait=True)

    assert not any(thread.is_alive() for thread in executor.threads)


def test_executor_entrega_excecao_no_future():
    executor = DaemonThreadExecutor(1)

    def _explode():
        raise ValueError("falhou")

    try:
        with pytest.raises(ValueError):
            executor.submit(_explode).result(timeout=5)
    finally:
        executor.shutdown(wait=True)

    with pytest.raises(RuntimeError):
        executor.submit(lambda: None)


@pytest.mark.django_db
def test_shutdown_nao_espera_handler_preso(signed_document_factory, monkeypatch):
    liberar = threading.Event()
    iniciou = threading.Event()

    class HandlerLento:
        def handle(self, job):
            iniciou.set()
            liberar.wait(timeout=10)
            return HandlerOutcome.transient("TRANSPORT_ERROR", "lento")

    monkeypatch.setattr("fiscal.worker.apply_outcome", lambda *args, **kwargs: True)
    enqueue_document(signed_document_factory().id)
    executor = DaemonThreadExecutor(1)
    worker = SubmissionWorker(
        worker_id="worker-lento",
        handler=HandlerLento(),
        executor=executor,
        config=SubmissionConfig(concurrency=1, shutdown_grace_seconds=0.2),
    )

    try:
        assert worker.run_once() == 1
        assert iniciou.wait(timeout=5)

        started = time.monotonic()
        abandoned = worker.shutdown()

        assert abandoned == 1
        assert time.monotonic() - started < 2
        assert executor.threads[0].daemon is True
    finally:
        liberar.set()
        for thread in executor.threads:
            thread.join(timeout=5)
