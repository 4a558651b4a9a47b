import pytest

from fiscal.audit import MAX_ERROR_LENGTH, record_event, sanitize_detail, sanitize_text
from fiscal.models import SubmissionAudit


def test_sanitize_text_mascara_segredos_conhecidos():
    texto = sanitize_text("login falhou com s3nh4-s0l-secreta", secrets=["s3nh4-s0l-secreta"])
    assert "s3nh4-s0l-secreta" not in texto
    assert "***" in texto


def test_sanitize_text_mascara_password_do_envelope():
    texto = sanitize_text("<wsse:Password>segredo</wsse:Password>")
    assert texto == "<wsse:Password>***</wsse:Password>"


@pytest.mark.parametrize("entrada", ["password=abc123", "sol_pass: abc123", "PASS=abc123"])
def test_sanitize_text_mascara_pares_chave_valor(entrada):
    assert "abc123" not in sanitize_text(entrada)


def test_sanitize_text_trunca_no_limite():
    texto = sanitize_text("x" * 2000)
    assert len(texto) == MAX_ERROR_LENGTH
    assert texto.endswith("...")


def test_sanitize_text_none():
    assert sanitize_text(None) == ""


def test_sanitize_detail_remove_chaves_proibidas_e_binarios():
    detail = sanitize_detail(
        {
            "sol_password": "x",
            "signed_body": "<Invoice/>",
            "ack_container": b"PK",
            "zip": b"PK",
            "attempts": 2,
            "nested": {"token": "t", "ok": True},
            "error": "pass=segredo",
        }
    )

    assert detail == {"attempts": 2, "nested": {"ok": True}, "error": "pass=***"}


@pytest.mark.django_db
def test_record_event_usa_ids_do_job(signed_document_factory, job_factory):
    doc = signed_document_factory()
    job = job_factory(doc)

    audit = record_event(
        SubmissionAudit.EVENT_CLAIMED,
        job=job,
        actor="w" * 300,
        detail={"password": "x", "attempts": 0},
    )

    audit.refresh_from_db()
    assert audit.document_id == doc.id
    assert audit.job_id == job.id
    assert audit.store_id == doc.store_id
    assert len(audit.actor) == 128
    assert audit.detail == {"attempts": 0}
