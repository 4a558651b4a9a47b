# fiscal/urls.py

from django.urls import path

from fiscal.views.submission_views import (
    document_status_view,
    queue_document_view,
    requeue_documents_view,
    retry_document_view,
)

app_name = "fiscal"

urlpatterns = [
    # SUNAT - status do documento
    path("sunat/documents/<uuid:document_id>", document_status_view, name="sunat_document_status"),
    path("sunat/documents/<uuid:document_id>/", document_status_view),

    # SUNAT - enfileirar envio
    path("sunat/documents/<uuid:document_id>/queue", queue_document_view, name="sunat_document_queue"),
    path("sunat/documents/<uuid:document_id>/queue/", queue_document_view),

    # SUNAT - reprocesso manual
    path("sunat/documents/<uuid:document_id>/retry", retry_document_view, name="sunat_document_retry"),
    path("sunat/documents/<uuid:document_id>/retry/", retry_document_view),

    # SUNAT - reenfileiramento administrativo (staff)
    path("sunat/admin/requeue", requeue_documents_view, name="sunat_admin_requeue"),
    path("sunat/admin/requeue/", requeue_documents_view),
]
