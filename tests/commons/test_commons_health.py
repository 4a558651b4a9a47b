import pytest
from django.db import DatabaseError
from django.test import Client

from fiscal.services.job_store import JobStore


def test_liveness():
    resp = Client().get("/api/v1/commons/health/liveness")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


@pytest.mark.django_db
def test_readiness_com_contagem_de_jobs(signed_document_factory, job_factory):
    job_factory(signed_document_factory())

    resp = Client().get("/api/v1/commons/health/readiness")

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["jobs"]["QUEUED"] == 1


@pytest.mark.django_db
def test_readiness_degradado_devolve_503(monkeypatch):
    def _falha():
        raise DatabaseError("down")

    monkeypatch.setattr(JobStore, "counts_by_status", staticmethod(_falha))

    resp = Client().get("/api/v1/commons/health/readiness")

    assert resp.status_code == 503
    assert resp.json()["ok"] is False


def test_time_now():
    resp = Client().get("/api/v1/commons/time/now")
    assert resp.status_code == 200
    assert "now" in resp.json()
