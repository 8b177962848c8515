# clientdesk/services/ledger_service.py
# Deliverable Ledger: asigna version_number por lineage y persiste versiones (append-only)
from __future__ import annotations

import logging
from typing import NamedTuple, Optional, List

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from clientdesk.core.settings import settings
from clientdesk.models.deliverable import DeliverableVersion, DeliverableStatus, Lineage
from clientdesk.services.errors import InvalidContent, NotFound, NotPending, OptimisticConflict

logger = logging.getLogger(__name__)

_HTTP_URL = TypeAdapter(AnyHttpUrl)


class DeliverableContent(NamedTuple):
    file_path: Optional[str] = None
    external_link: Optional[str] = None


# -----------------------------
# Contenido: archivo XOR link
# -----------------------------
def validate_content(content: DeliverableContent) -> DeliverableContent:
    """
    Exactamente uno de file_path / external_link. El link debe ser una URL
    http(s) absoluta; se guarda tal cual la envió el cliente (sin normalizar).
    """
    file_path = (content.file_path or "").strip() or None
    raw_link = content.external_link
    link = raw_link if raw_link and raw_link.strip() else None

    if file_path and link:
        raise InvalidContent("Provide either a file or an external_link, not both")
    if not file_path and not link:
        raise InvalidContent("Missing deliverable content: file or external_link")

    if link:
        if link != link.strip():
            raise InvalidContent("external_link must not have leading or trailing whitespace")
        try:
            _HTTP_URL.validate_python(link)
        except ValidationError:
            raise InvalidContent("Invalid URL format")

    return DeliverableContent(file_path=file_path, external_link=link)


# -----------------------------
# Helpers de lineage
# -----------------------------
def _lineage_where(lineage: Lineage, model=DeliverableVersion):
    return (
        model.purchase_id == lineage.purchase_id,
        model.feature_name == lineage.feature_name,
    )


def _max_version_number(db: Session, lineage: Lineage) -> Optional[int]:
    return db.scalar(
        select(func.max(DeliverableVersion.version_number)).where(*_lineage_where(lineage))
    )


def _next_version_number(db: Session, lineage: Lineage) -> int:
    """
    Calcula el siguiente version_number para el lineage (1 si no hay versiones).
    """
    max_number = _max_version_number(db, lineage)
    return 1 if max_number is None else int(max_number) + 1


def latest_clause(model=DeliverableVersion):
    """
    Condición "es la última versión de su lineage" (MAX correlacionado).
    Es el contrato del read-model: cualquier listado de "latest" pasa por aquí.
    """
    d2 = aliased(DeliverableVersion)
    max_for_lineage = (
        select(func.max(d2.version_number))
        .where(
            d2.purchase_id == model.purchase_id,
            d2.feature_name == model.feature_name,
        )
        .correlate(model)
        .scalar_subquery()
    )
    return model.version_number == max_for_lineage


def order_latest(stmt, purchase_id: Optional[int] = None):
    # por compra: orden de feature; sistema completo: subida más reciente primero
    if purchase_id is not None:
        return stmt.order_by(DeliverableVersion.feature_name.asc())
    return stmt.order_by(DeliverableVersion.uploaded_at.desc(), DeliverableVersion.id.desc())


def _is_version_collision(exc: IntegrityError) -> bool:
    msg = str(getattr(exc, "orig", exc))
    return (
        "uq_deliverable_lineage_version" in msg
        or "deliverables.purchase_id, deliverables.feature_name, deliverables.version_number" in msg
    )


# -----------------------------
# Escritura
# -----------------------------
def append_version(
    db: Session,
    *,
    lineage: Lineage,
    content: DeliverableContent,
    uploaded_by: Optional[int],
    notes: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> DeliverableVersion:
    """
    Inserta la versión max+1 del lineage con status=pending.
    - No hace commit; el caller debe hacer db.commit().
    - El INSERT va en un SAVEPOINT: si otro escritor ganó el mismo número
      (unique del lineage), se relee el máximo y se reintenta.
    - expected_version: si se indica y el número calculado difiere, OptimisticConflict.
    - No toca ninguna otra fila.
    """
    content = validate_content(content)
    attempts = max(1, int(settings.VERSION_ALLOC_MAX_RETRIES or 1))

    for attempt in range(1, attempts + 1):
        number = _next_version_number(db, lineage)
        if expected_version is not None and number != expected_version:
            raise OptimisticConflict(
                f"Expected version {expected_version} for {lineage.feature_name!r}, next is {number}"
            )

        row = DeliverableVersion(
            purchase_id=lineage.purchase_id,
            feature_name=lineage.feature_name,
            version_number=number,
            file_path=content.file_path,
            deliverable_link=content.external_link,
            status=DeliverableStatus.PENDING,
            uploaded_by=uploaded_by,
            admin_notes=notes or None,
        )
        try:
            with db.begin_nested():
                db.add(row)
                db.flush()
        except IntegrityError as e:
            if not _is_version_collision(e):
                raise
            logger.warning(
                "Version collision on purchase=%s feature=%s version=%s (attempt %s/%s)",
                lineage.purchase_id, lineage.feature_name, number, attempt, attempts,
            )
            continue
        return row

    raise OptimisticConflict("Could not allocate a version number; concurrent uploads in progress")


# -----------------------------
# Transiciones de status
# -----------------------------
_TRANSITIONS: dict[DeliverableStatus, frozenset[DeliverableStatus]] = {
    DeliverableStatus.PENDING: frozenset({DeliverableStatus.APPROVED, DeliverableStatus.REVISION_REQUESTED}),
    DeliverableStatus.APPROVED: frozenset(),
    DeliverableStatus.REVISION_REQUESTED: frozenset(),
}


def can_transition(src: DeliverableStatus, dst: DeliverableStatus) -> bool:
    return dst in _TRANSITIONS[DeliverableStatus(src)]


def transition_status(db: Session, version: DeliverableVersion, dst: DeliverableStatus) -> DeliverableVersion:
    """
    Única vía para mover el status de una versión. Solo pending → approved|revision_requested.
    El UPDATE es condicional: la fila debe seguir en el status leído y seguir siendo
    la última del lineage; si no, alguien más ganó la carrera (OptimisticConflict).
    """
    src = DeliverableStatus(version.status)
    dst = DeliverableStatus(dst)
    if not can_transition(src, dst):
        raise NotPending(f"Invalid transition {src.value} → {dst.value}")

    d2 = aliased(DeliverableVersion)
    lineage_max = (
        select(func.max(d2.version_number))
        .where(d2.purchase_id == version.purchase_id, d2.feature_name == version.feature_name)
        .scalar_subquery()
    )
    result = db.execute(
        update(DeliverableVersion)
        .where(
            DeliverableVersion.id == version.id,
            DeliverableVersion.status == src,
            DeliverableVersion.version_number == lineage_max,
        )
        .values(status=dst)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise OptimisticConflict()

    db.refresh(version)
    return version


# -----------------------------
# Lectura
# -----------------------------
def get_version(db: Session, version_id: int) -> DeliverableVersion:
    version = db.get(DeliverableVersion, version_id)
    if not version:
        raise NotFound("Deliverable not found")
    return version


def latest_or_none(db: Session, lineage: Lineage) -> Optional[DeliverableVersion]:
    return db.scalar(
        select(DeliverableVersion)
        .where(*_lineage_where(lineage))
        .order_by(DeliverableVersion.version_number.desc())
        .limit(1)
    )


def latest(db: Session, lineage: Lineage) -> DeliverableVersion:
    version = latest_or_none(db, lineage)
    if version is None:
        raise NotFound(f"No deliverable for feature {lineage.feature_name!r} in purchase {lineage.purchase_id}")
    return version


def history(db: Session, lineage: Lineage) -> List[DeliverableVersion]:
    """
    Todas las versiones del lineage, la más nueva primero.
    """
    return list(
        db.scalars(
            select(DeliverableVersion)
            .where(*_lineage_where(lineage))
            .order_by(DeliverableVersion.version_number.desc())
        )
    )


def list_latest_by_status(
    db: Session,
    status: DeliverableStatus,
    *,
    purchase_id: Optional[int] = None,
) -> List[DeliverableVersion]:
    """
    Para cada lineage del scope (una compra o todo el sistema) devuelve SOLO su
    última versión, y solo si su status coincide. Nunca filas superadas.
    """
    stmt = select(DeliverableVersion).where(
        latest_clause(),
        DeliverableVersion.status == DeliverableStatus(status),
    )
    if purchase_id is not None:
        stmt = stmt.where(DeliverableVersion.purchase_id == purchase_id)
    return list(db.scalars(order_latest(stmt, purchase_id)).unique())
