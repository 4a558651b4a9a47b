from .document_models import ElectronicDocument
from .submission_models import SubmissionJob, SubmissionAudit
from .store_config_models import SunatStoreConfig


__all__ = [
    "ElectronicDocument",
    "SubmissionJob",
    "SubmissionAudit",
    "SunatStoreConfig",
]
