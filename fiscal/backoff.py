# fiscal/backoff.py
"""
Agenda de reenvio após falha transitória.

Tabela fixa (não fórmula) para manter o tempo de reenvio previsível e
auditável. A chave é o número de tentativas JÁ incrementado.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional


MAX_ATTEMPTS = 5

BACKOFF_TABLE: dict[int, timedelta] = {
    1: timedelta(minutes=1),
    2: timedelta(minutes=5),
    3: timedelta(minutes=15),
    4: timedelta(minutes=60),
    5: timedelta(minutes=120),
}


def next_retry_delay(attempts: int) -> Optional[timedelta]:
    """
    Retorna o atraso para a tentativa `attempts` (1-indexado, pós-incremento),
    ou None quando o limite foi excedido e o job deve ir para FAILED.
    """
    if attempts < 1:
        raise ValueError("attempts deve ser >= 1 após uma falha.")
    if attempts > MAX_ATTEMPTS:
        return None
    return BACKOFF_TABLE[attempts]


def next_run_at(attempts: int, now: datetime) -> Optional[datetime]:
    delay = next_retry_delay(attempts)
    if delay is None:
        return None
    return now + delay
