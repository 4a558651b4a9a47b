# fiscal/services/document_state_machine.py

from __future__ import annotations

import logging
from typing import Iterable

from django.db import transaction

from fiscal.exceptions import InvalidTransitionError
from fiscal.models import ElectronicDocument

logger = logging.getLogger("pdv.fiscal")

Status = ElectronicDocument


# Matriz de transições permitidas do documento eletrônico.
TRANSICOES_VALIDAS: dict[str, set[str]] = {
    Status.STATUS_DRAFT: {Status.STATUS_PENDING},
    Status.STATUS_PENDING: {Status.STATUS_SIGNED},

    # Assinado:
    # - SENT quando a SUNAT confirma recebimento (CDR ou ticket)
    # - ERROR quando falha fatal antes de qualquer resposta
    Status.STATUS_SIGNED: {Status.STATUS_SENT, Status.STATUS_ERROR},

    Status.STATUS_SENT: {
        Status.STATUS_ACCEPTED,
        Status.STATUS_REJECTED,
        Status.STATUS_ERROR,
    },

    # Reprocesso manual (retry) volta para SIGNED
    Status.STATUS_ERROR: {Status.STATUS_SIGNED},
    Status.STATUS_REJECTED: {Status.STATUS_SIGNED},

    # Terminal
    Status.STATUS_ACCEPTED: set(),
}


class DocumentStateMachine:
    """
    ÚNICO ponto autorizado a trocar o status do ElectronicDocument.
    """

    @classmethod
    @transaction.atomic
    def change_status(
        cls,
        document: ElectronicDocument,
        new_status: str,
        *,
        reason: str | None = None,
        extra_fields: Iterable[str] = (),
        extra_context: dict | None = None,
        save: bool = True,
    ) -> bool:
        """
        - Valida se a transição é permitida a partir do status atual.
        - Idempotente: mesmo status → nada acontece (retorna False).
        - extra_fields: campos alterados junto com o status (remote_code,
          ack_container, ...) gravados no mesmo UPDATE.
        """
        current = document.status

        if current == new_status:
            logger.debug(
                "Transição de status idempotente ignorada.",
                extra={
                    "event": "sunat_document_status_idempotent",
                    "document_id": str(document.id),
                    "status_atual": current,
                },
            )
            return False

        allowed: Iterable[str] = TRANSICOES_VALIDAS.get(current, set())
        if new_status not in allowed:
            raise InvalidTransitionError(
                f"Transição de {current} para {new_status} não é permitida para o documento {document.id}."
            )

        document.status = new_status
        if save:
            fields = ["status", "updated_at", *extra_fields]
            document.save(update_fields=list(dict.fromkeys(fields)))

        context = {
            "event": "sunat_document_status_transition",
            "document_id": str(document.id),
            "store_id": str(document.store_id),
            "status_anterior": current,
            "status_novo": new_status,
            "motivo": reason,
        }
        if extra_context:
            context.update(extra_context)

        logger.info("sunat_document_status_transition", extra=context)
        return True

    @classmethod
    def to_sent(cls, document: ElectronicDocument, **kwargs) -> bool:
        return cls.change_status(document, Status.STATUS_SENT, **kwargs)

    @classmethod
    def to_accepted(cls, document: ElectronicDocument, **kwargs) -> bool:
        return cls.change_status(document, Status.STATUS_ACCEPTED, **kwargs)

    @classmethod
    def to_rejected(cls, document: ElectronicDocument, **kwargs) -> bool:
        return cls.change_status(document, Status.STATUS_REJECTED, **kwargs)

    @classmethod
    def to_error(cls, document: ElectronicDocument, **kwargs) -> bool:
        return cls.change_status(document, Status.STATUS_ERROR, **kwargs)

    @classmethod
    def to_signed(cls, document: ElectronicDocument, **kwargs) -> bool:
        return cls.change_status(document, Status.STATUS_SIGNED, **kwargs)
