"""
Error taxonomy shared by the store, the core engine and the HTTP layer.

Every error carries the HTTP status it maps to; `app.main` renders them as
`{"detail": message}` responses.
"""


class AuditFlowError(Exception):
    """Base class for domain errors"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AuditFlowError):
    """Referenced template/session/question/response does not exist"""

    status_code = 404


class ValidationError(AuditFlowError):
    """Malformed input, rejected before any write is attempted"""

    status_code = 400


class PersistenceError(AuditFlowError):
    """Backing store read/write failed; safe to retry the same call"""

    status_code = 503


class DependencyError(AuditFlowError):
    """External collaborator (LLM, email) failed"""

    status_code = 502


class ReportGenerationError(DependencyError):
    """Narrative report generation failed"""
    pass


class NotificationError(DependencyError):
    """Auditor notification could not be dispatched"""
    pass
