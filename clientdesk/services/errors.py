# clientdesk/services/errors.py
# Taxonomía de errores del workflow. Todos son recuperables (4xx) salvo la caída del store.
from __future__ import annotations


class WorkflowError(Exception):
    code = "workflow_error"
    http_status = 400
    default_message = "Workflow error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFound(WorkflowError):
    code = "not_found"
    http_status = 404
    default_message = "Not found"


class InvalidContent(WorkflowError):
    code = "invalid_content"
    http_status = 400
    default_message = "Exactly one of file or external_link is required"


class NotPending(WorkflowError):
    code = "not_pending"
    http_status = 400
    default_message = "Deliverable is not awaiting review"


class NotEditable(WorkflowError):
    code = "not_editable"
    http_status = 400
    default_message = "Can only edit pending revision requests"


class Forbidden(WorkflowError):
    code = "forbidden"
    http_status = 403
    default_message = "Access denied"


class DuplicateOpenRequest(WorkflowError):
    code = "duplicate_open_request"
    http_status = 409
    default_message = "A revision request is already pending for this deliverable"


class OptimisticConflict(WorkflowError):
    """
    Se perdió la carrera sobre la última versión del lineage. El cliente debe
    refrescar y volver a decidir; reintentar la misma acción no tiene sentido.
    """
    code = "optimistic_conflict"
    http_status = 409
    default_message = "The deliverable changed since it was read; refresh and retry"


class InvalidTransition(WorkflowError):
    code = "invalid_transition"
    http_status = 400
    default_message = "Invalid status transition"
