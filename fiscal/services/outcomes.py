# fiscal/services/outcomes.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from fiscal.sunat_codes import clip_remote_code


OUTCOME_ACCEPTED = "ACCEPTED"
OUTCOME_REJECTED = "REJECTED"
OUTCOME_TRANSIENT = "TRANSIENT"
OUTCOME_FATAL = "FATAL"


@dataclass
class HandlerOutcome:
    """
    Resultado de uma tentativa de entrega, já classificado.

      - ACCEPTED / REJECTED: resposta definitiva da SUNAT (job DONE).
      - TRANSIENT: reagendar pela tabela de backoff.
      - FATAL: job FAILED e documento ERROR, sem nova tentativa.

    `error` é o texto que vai para SubmissionJob.last_error (sanitizado
    antes de gravar).
    """

    kind: str
    remote_code: Optional[str] = None
    remote_message: Optional[str] = None
    ack_container: Optional[bytes] = None
    notes: List[str] = field(default_factory=list)
    error: str = ""
    error_code: Optional[str] = None

    def __post_init__(self):
        self.remote_code = clip_remote_code(self.remote_code)

    @property
    def is_final_response(self) -> bool:
        return self.kind in (OUTCOME_ACCEPTED, OUTCOME_REJECTED)

    @classmethod
    def accepted(cls, code: str, message: str, *, ack_container=None, notes=None) -> "HandlerOutcome":
        return cls(
            kind=OUTCOME_ACCEPTED,
            remote_code=code,
            remote_message=message,
            ack_container=ack_container,
            notes=list(notes or []),
        )

    @classmethod
    def rejected(cls, code: str, message: str, *, ack_container=None, notes=None) -> "HandlerOutcome":
        return cls(
            kind=OUTCOME_REJECTED,
            remote_code=code,
            remote_message=message,
            ack_container=ack_container,
            notes=list(notes or []),
        )

    @classmethod
    def transient(cls, error_code: str, error: str, *, remote_code: Optional[str] = None) -> "HandlerOutcome":
        return cls(kind=OUTCOME_TRANSIENT, error_code=error_code, error=error, remote_code=remote_code)

    @classmethod
    def fatal(cls, error_code: str, error: str, *, remote_code: Optional[str] = None) -> "HandlerOutcome":
        return cls(kind=OUTCOME_FATAL, error_code=error_code, error=error, remote_code=remote_code)
