from __future__ import annotations

import os
from typing import BinaryIO, Optional

from fastapi import HTTPException

from clientdesk.core.settings import settings


def _measure(file_obj: BinaryIO) -> int:
    pos = file_obj.tell()
    file_obj.seek(0, os.SEEK_END)
    size = file_obj.tell()
    file_obj.seek(pos)
    return size


def enforce_upload_size(file_obj: BinaryIO, declared_size: Optional[int] = None) -> int:
    """
    Tamaño máximo de archivo (UPLOAD_MAX_MB). 413 si se pasa.
    Devuelve el tamaño en bytes.
    """
    size = declared_size if declared_size is not None else _measure(file_obj)
    limit_mb = float(settings.UPLOAD_MAX_MB or 0)
    if limit_mb <= 0:
        return size
    if size > limit_mb * 1024 * 1024:
        raise HTTPException(
            status_code=413,
            detail=f"Payload too large: file is {size / (1024 * 1024):.1f}MB, limit is {limit_mb:.0f}MB",
        )
    return size
