# fiscal/conf.py
"""
Configuração do pipeline de envio SUNAT.

Os valores vêm de settings.SUNAT_SUBMISSION (montado em config/settings.py a
partir de variáveis de ambiente) sobre os defaults abaixo.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

from django.conf import settings


DEFAULT_REMOTE_CODES_PATH = Path(__file__).resolve().parent / "data" / "sunat_codes.json"


@dataclass(frozen=True)
class SubmissionConfig:
    poll_interval_seconds: float = 10.0
    concurrency: int = 3
    lease_seconds: int = 300
    health_check_interval_seconds: float = 60.0
    shutdown_grace_seconds: float = 30.0
    ticket_poll_interval_seconds: float = 5.0
    ticket_max_wait_seconds: float = 30.0
    http_timeout_seconds: float = 60.0
    remote_codes_path: str = str(DEFAULT_REMOTE_CODES_PATH)
    use_mock_client: bool = False


def _from_mapping(raw: Mapping[str, Any]) -> SubmissionConfig:
    known = {f.name: f for f in fields(SubmissionConfig)}
    values: dict[str, Any] = {}
    for key, value in raw.items():
        name = str(key).lower()
        if name not in known or value in (None, ""):
            continue
        default = known[name].default
        if isinstance(default, bool):
            if isinstance(value, str):
                value = value.strip().lower() in {"1", "true", "yes", "on"}
            values[name] = bool(value)
        elif isinstance(default, int):
            values[name] = max(1, int(value))
        elif isinstance(default, float):
            values[name] = max(0.0, float(value))
        else:
            values[name] = str(value)
    return SubmissionConfig(**values)


def get_submission_config() -> SubmissionConfig:
    """
    Lê settings.SUNAT_SUBMISSION a cada chamada (os testes alteram via fixture
    `settings`), normalizando tipos e ignorando chaves desconhecidas.
    """
    return _from_mapping(getattr(settings, "SUNAT_SUBMISSION", {}) or {})
