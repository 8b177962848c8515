# clientdesk/services/blob_store.py
# Archivos de deliverables: Firebase Storage si está configurado, disco local si no.
from __future__ import annotations

import logging
import os
import re
import shutil
import urllib.parse
import uuid
from typing import BinaryIO

import firebase_admin
from firebase_admin import credentials, storage

from clientdesk.core.settings import settings
from clientdesk.models.deliverable import Lineage

logger = logging.getLogger(__name__)

_FIREBASE_APP = None
_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


def _normalize_bucket(bucket: str) -> str:
    if bucket.startswith("gs://"):
        return bucket[5:]
    return bucket


def is_firebase_configured() -> bool:
    cred_path = settings.FIREBASE_CREDENTIALS_PATH or ""
    bucket = settings.FIREBASE_STORAGE_BUCKET or ""
    if not cred_path or not bucket:
        return False
    return os.path.exists(cred_path)


def _get_firebase_app():
    global _FIREBASE_APP
    if _FIREBASE_APP is not None:
        return _FIREBASE_APP
    try:
        _FIREBASE_APP = firebase_admin.get_app()
        return _FIREBASE_APP
    except ValueError:
        pass

    cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
    _FIREBASE_APP = firebase_admin.initialize_app(
        cred,
        {"storageBucket": _normalize_bucket(settings.FIREBASE_STORAGE_BUCKET or "")},
    )
    return _FIREBASE_APP


def safe_filename(filename: str | None) -> str:
    base = os.path.basename(filename or "").strip()
    cleaned = _SAFE_NAME.sub("-", base).strip("-.")
    return cleaned or "file"


def _dest_path(lineage: Lineage, filename: str | None) -> str:
    # deliverables/<purchase>/<uuid>-<nombre>; la feature no va en la ruta (nombres libres)
    return f"deliverables/{lineage.purchase_id}/{uuid.uuid4().hex}-{safe_filename(filename)}"


def _upload_to_firebase(file_obj: BinaryIO, content_type: str | None, dest_path: str) -> str:
    app = _get_firebase_app()
    bucket = storage.bucket(app=app)

    token = uuid.uuid4().hex
    blob = bucket.blob(dest_path)
    blob.metadata = {"firebaseStorageDownloadTokens": token}
    blob.upload_from_file(file_obj, content_type=(content_type or "application/octet-stream"))

    bucket_name = _normalize_bucket(settings.FIREBASE_STORAGE_BUCKET or "")
    encoded_path = urllib.parse.quote(dest_path, safe="")
    return f"https://firebasestorage.googleapis.com/v0/b/{bucket_name}/o/{encoded_path}?alt=media&token={token}"


def _write_local(file_obj: BinaryIO, dest_path: str) -> str:
    full = os.path.join(settings.UPLOAD_DIR, *dest_path.split("/"))
    os.makedirs(os.path.dirname(full), exist_ok=True)
    with open(full, "wb") as out:
        shutil.copyfileobj(file_obj, out)
    return dest_path


def store_deliverable_file(
    file_obj: BinaryIO,
    *,
    filename: str | None,
    content_type: str | None,
    lineage: Lineage,
) -> str:
    """
    Guarda el archivo y devuelve la referencia que va en file_path
    (URL de Firebase, o ruta relativa a UPLOAD_DIR en local).
    Cada llamada escribe un blob nuevo; nunca se sobreescribe una versión previa.
    """
    dest = _dest_path(lineage, filename)
    if is_firebase_configured():
        ref = _upload_to_firebase(file_obj, content_type, dest)
    else:
        ref = _write_local(file_obj, dest)
    logger.info("Stored deliverable file for purchase=%s feature=%s at %s", lineage.purchase_id, lineage.feature_name, dest)
    return ref
