# fiscal/audit.py
"""
Gravação da trilha de auditoria do pipeline de envio.

Regras:
  - Nunca grava conteúdo do documento, XML assinado, CDR ou credenciais.
  - Textos livres passam por sanitize_text (segredos mascarados, limite
    de tamanho) antes de ir para o banco.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, Optional

from fiscal.models import SubmissionAudit
from fiscal.sunat_codes import clip_remote_code

logger = logging.getLogger("pdv.fiscal")


MAX_ERROR_LENGTH = 500

# Chaves que nunca podem aparecer no detail da auditoria
FORBIDDEN_DETAIL_KEYS = {
    "password",
    "sol_password",
    "secret",
    "token",
    "signed_body",
    "ack_container",
    "content",
    "content_file",
    "certificate",
}

_PASSWORD_PATTERNS = (
    re.compile(r"(<(?:\w+:)?Password[^>]*>)(.*?)(</(?:\w+:)?Password>)", re.IGNORECASE | re.DOTALL),
    re.compile(r"((?:sol_)?pass(?:word)?\s*[=:]\s*)(\S+)", re.IGNORECASE),
)


def sanitize_text(text: Any, *, secrets: Iterable[str] = (), limit: int = MAX_ERROR_LENGTH) -> str:
    """
    Mascara segredos conhecidos e padrões de senha, e trunca em `limit`.
    """
    if text is None:
        return ""
    value = str(text)

    for secret in secrets:
        if secret:
            value = value.replace(secret, "***")

    value = _PASSWORD_PATTERNS[0].sub(r"\1***\3", value)
    value = _PASSWORD_PATTERNS[1].sub(r"\1***", value)

    if len(value) > limit:
        value = value[: limit - 3] + "..."
    return value


def sanitize_detail(detail: Optional[Dict[str, Any]], *, secrets: Iterable[str] = ()) -> Dict[str, Any]:
    secrets = tuple(secrets)
    clean: Dict[str, Any] = {}
    for key, value in (detail or {}).items():
        if str(key).lower() in FORBIDDEN_DETAIL_KEYS:
            continue
        if isinstance(value, dict):
            clean[key] = sanitize_detail(value, secrets=secrets)
        elif isinstance(value, (bytes, bytearray, memoryview)):
            continue
        elif isinstance(value, str):
            clean[key] = sanitize_text(value, secrets=secrets)
        elif value is None or isinstance(value, (bool, int, float)):
            clean[key] = value
        else:
            clean[key] = sanitize_text(value, secrets=secrets)
    return clean


def record_event(
    event: str,
    *,
    document=None,
    job=None,
    actor: Optional[str] = None,
    remote_code: Optional[str] = None,
    detail: Optional[Dict[str, Any]] = None,
    secrets: Iterable[str] = (),
) -> SubmissionAudit:
    document_id = getattr(document, "id", None) or getattr(job, "document_id", None)
    store_id = getattr(document, "store_id", None) or getattr(job, "store_id", None)

    audit = SubmissionAudit.objects.create(
        event=event,
        document_id=document_id,
        job_id=getattr(job, "id", None),
        store_id=store_id,
        actor=str(actor or "")[:128],
        remote_code=clip_remote_code(remote_code),
        detail=sanitize_detail(detail, secrets=secrets),
    )

    logger.info(
        "sunat_audit_recorded",
        extra={
            "event": "sunat_audit",
            "audit_event": event,
            "document_id": str(document_id) if document_id else None,
            "job_id": str(audit.job_id) if audit.job_id else None,
            "remote_code": remote_code,
        },
    )
    return audit
