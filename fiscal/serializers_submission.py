# fiscal/serializers_submission.py
from rest_framework import serializers

from fiscal.services.submission_service import REQUEUE_DEFAULT_LIMIT, REQUEUE_MAX_LIMIT, REQUEUE_STATUSES


class EnqueueResultSerializer(serializers.Serializer):
    """
    Espelha o DTO EnqueueResult de fiscal.services.submission_service.
    """

    job_id = serializers.CharField()
    status = serializers.CharField()
    signal = serializers.CharField()
    document_id = serializers.CharField(allow_null=True)


class SubmissionJobSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    job_type = serializers.CharField()
    status = serializers.CharField()
    attempts = serializers.IntegerField()
    last_error = serializers.CharField(allow_blank=True)
    next_run_at = serializers.DateTimeField()
    created_at = serializers.DateTimeField()
    completed_at = serializers.DateTimeField(allow_null=True)


class DocumentStatusSerializer(serializers.Serializer):
    """
    Status do documento para a API. Nunca expõe signed_body nem o CDR.
    """

    id = serializers.UUIDField()
    store_id = serializers.UUIDField()
    doc_type = serializers.CharField()
    full_number = serializers.CharField()
    issue_date = serializers.DateField()
    status = serializers.CharField()
    remote_code = serializers.CharField(allow_null=True)
    remote_message = serializers.CharField(allow_null=True)
    remote_ticket = serializers.CharField(allow_null=True)
    remote_responded_at = serializers.DateTimeField(allow_null=True)
    has_ack = serializers.SerializerMethodField()
    latest_job = serializers.SerializerMethodField()

    def get_has_ack(self, document) -> bool:
        return bool(document.ack_container)

    def get_latest_job(self, document):
        job = self.context.get("latest_job")
        if job is None:
            return None
        return SubmissionJobSerializer(job).data


class RequeueInputSerializer(serializers.Serializer):
    document_id = serializers.UUIDField(required=False)
    status = serializers.ChoiceField(choices=REQUEUE_STATUSES, required=False)
    store_id = serializers.UUIDField(required=False)
    limit = serializers.IntegerField(min_value=1, max_value=REQUEUE_MAX_LIMIT, default=REQUEUE_DEFAULT_LIMIT)


class RequeuedJobSerializer(serializers.Serializer):
    job_id = serializers.CharField()
    document_id = serializers.CharField()
    full_number = serializers.CharField()
    document_status = serializers.CharField()
    job_type = serializers.CharField()


class RequeueResultSerializer(serializers.Serializer):
    queued = serializers.IntegerField()
    skipped = serializers.IntegerField()
    jobs = RequeuedJobSerializer(many=True)


class OrphanDocumentSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    store_id = serializers.UUIDField()
    full_number = serializers.CharField()
    status = serializers.CharField()
    remote_ticket = serializers.CharField(allow_null=True)
    created_at = serializers.DateTimeField()


class RequeueOverviewQuerySerializer(serializers.Serializer):
    store_id = serializers.UUIDField(required=False)
