from app.models.user import User
from app.models.audit import Audit, Entity
from app.models.audit_log import AuditLog
from app.models.observation import Observation, ObservationReviewCycle
from app.models.import_job import ImportJob, ImportJobRecord, ImportMappingTemplate, ImportStatus

__all__ = [
    "User",
    "Audit", "Entity",
    "AuditLog",
    "Observation", "ObservationReviewCycle",
    "ImportJob", "ImportJobRecord", "ImportMappingTemplate", "ImportStatus",
]
