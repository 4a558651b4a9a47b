# fiscal/views/submission_views.py

import logging
from dataclasses import asdict

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import APIException, NotFound
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response

from fiscal.exceptions import DocumentNotFoundError, InvalidStateError
from fiscal.serializers_submission import (
    DocumentStatusSerializer,
    EnqueueResultSerializer,
    OrphanDocumentSerializer,
    RequeueInputSerializer,
    RequeueOverviewQuerySerializer,
    RequeueResultSerializer,
)
from fiscal.services.submission_service import (
    SIGNAL_ALREADY_DONE,
    SIGNAL_ALREADY_QUEUED,
    enqueue_document,
    get_document_status,
    requeue_documents,
    requeue_overview,
    retry_document,
)

logger = logging.getLogger("pdv.fiscal")


class ConflictError(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = {"code": "INVALID_STATE", "message": "Operação não permitida no estado atual."}
    default_code = "conflict"


MESSAGES_BY_SIGNAL = {
    SIGNAL_ALREADY_QUEUED: "Documento já está na fila de envio.",
    SIGNAL_ALREADY_DONE: "Documento já foi processado pela SUNAT.",
}


def _actor_from_request(request) -> str:
    user = request.user
    return getattr(user, "username", None) or str(getattr(user, "id", "") or "")


def _enqueue_response(result, message: str) -> Response:
    payload = {
        "code": result.signal,
        "message": MESSAGES_BY_SIGNAL.get(result.signal, message),
        "data": EnqueueResultSerializer(asdict(result)).data,
    }
    return Response(payload, status=status.HTTP_200_OK)


def _log_refused(event: str, request, document_id, exc) -> None:
    logger.warning(
        event,
        extra={
            "event": event,
            "user_id": getattr(request.user, "id", None),
            "document_id": str(document_id),
            "code": exc.code,
            "outcome": "refused",
        },
    )


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def queue_document_view(request, document_id):
    """
    POST /api/v1/fiscal/sunat/documents/<id>/queue

    200 → {code: QUEUED | ALREADY_QUEUED | ALREADY_DONE, message, data}
    409 → documento fora de SIGNED (INVALID_STATE)
    404 → documento inexistente
    """
    try:
        result = enqueue_document(document_id, actor=_actor_from_request(request))
    except DocumentNotFoundError as exc:
        _log_refused("sunat_queue_not_found", request, document_id, exc)
        raise NotFound(detail=exc.as_dict())
    except InvalidStateError as exc:
        _log_refused("sunat_queue_invalid_state", request, document_id, exc)
        raise ConflictError(detail=exc.as_dict())

    return _enqueue_response(result, "Documento enfileirado para envio à SUNAT.")


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def retry_document_view(request, document_id):
    """
    POST /api/v1/fiscal/sunat/documents/<id>/retry

    Reprocesso manual: documento ERROR, último job FAILED ou rechazo
    transitório. Cria um job novo com attempts=0.
    """
    try:
        result = retry_document(document_id, actor=_actor_from_request(request))
    except DocumentNotFoundError as exc:
        _log_refused("sunat_retry_not_found", request, document_id, exc)
        raise NotFound(detail=exc.as_dict())
    except InvalidStateError as exc:
        _log_refused("sunat_retry_invalid_state", request, document_id, exc)
        raise ConflictError(detail=exc.as_dict())

    return _enqueue_response(result, "Reenvio agendado.")


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def document_status_view(request, document_id):
    """
    GET /api/v1/fiscal/sunat/documents/<id>
    """
    try:
        document, latest_job = get_document_status(document_id)
    except DocumentNotFoundError as exc:
        raise NotFound(detail=exc.as_dict())

    data = DocumentStatusSerializer(document, context={"latest_job": latest_job}).data
    return Response(data, status=status.HTTP_200_OK)


@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated, IsAdminUser])
def requeue_documents_view(request):
    """
    /api/v1/fiscal/sunat/admin/requeue (somente staff)

    GET  → contagem de SIGNED/ERROR/SENT + amostra de documentos sem job ativo.
    POST → {document_id?, status?, store_id?, limit?} cria jobs novos para os
           documentos sem job QUEUED/CLAIMED, mais antigos primeiro.
    """
    if request.method == "GET":
        ser_query = RequeueOverviewQuerySerializer(data=request.query_params)
        ser_query.is_valid(raise_exception=True)
        overview = requeue_overview(**ser_query.validated_data)
        payload = {
            "counts": overview.counts,
            "orphan_total": overview.orphan_total,
            "orphans": OrphanDocumentSerializer(overview.orphans, many=True).data,
        }
        return Response(payload, status=status.HTTP_200_OK)

    ser_in = RequeueInputSerializer(data=request.data)
    ser_in.is_valid(raise_exception=True)

    result = requeue_documents(actor=_actor_from_request(request), **ser_in.validated_data)

    logger.info(
        "sunat_admin_requeue",
        extra={
            "event": "sunat_admin_requeue",
            "user_id": getattr(request.user, "id", None),
            "queued": result.queued,
            "skipped": result.skipped,
        },
    )
    payload = {
        "code": "REQUEUED",
        "message": f"{result.queued} documento(s) reenfileirado(s), {result.skipped} ignorado(s).",
        "data": RequeueResultSerializer(asdict(result)).data,
    }
    return Response(payload, status=status.HTTP_200_OK)
