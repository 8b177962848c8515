# clientdesk/api/deps/errors.py
from __future__ import annotations

from fastapi import HTTPException

from clientdesk.services.errors import WorkflowError


def workflow_http_error(e: WorkflowError) -> HTTPException:
    # detail = {"code": "...", "message": "..."}
    return HTTPException(status_code=e.http_status, detail=e.to_detail())
