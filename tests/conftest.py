# tests/conftest.py
from __future__ import annotations

from typing import Callable, Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from clientdesk.core.settings import settings
from clientdesk.db.base import Base
from clientdesk.db.session import configure_sqlite, get_db
from clientdesk.models.auth import User, UserRole
from clientdesk.models.deliverable import Lineage
from clientdesk.security.jwt import create_access_token
from clientdesk.services.directory_service import register_purchase
from clientdesk.utils.idempotency import idempotency_cache
from clientdesk.utils.ratelimit import reset_rate_limits
import clientdesk.models  # noqa: F401  (pobla Base.metadata)

# SQLite en memoria compartida entre hilos (TestClient corre endpoints sync en threadpool)
engine = configure_sqlite(
    create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db() -> Session:
    """
    Esquema nuevo por prueba (create_all / drop_all). Los endpoints hacen
    commit de verdad, así que no alcanza con un rollback al final.
    """
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    # Uploads a un directorio temporal; sin Firebase, sin webhooks reales
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "FIREBASE_CREDENTIALS_PATH", None)
    monkeypatch.setattr(settings, "WEBHOOKS_ENABLED", False)
    monkeypatch.setattr(settings, "RATELIMIT_ENABLED", False)
    monkeypatch.setattr(settings, "IDEMPOTENCY_ENABLED", True)
    idempotency_cache.clear()
    reset_rate_limits()
    yield


@pytest.fixture
def client(db: Session):
    """
    TestClient con get_db apuntando a la sesión de la prueba.
    """
    from clientdesk.main import app  # import tardío para evitar ciclos

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


# -----------------------------
# Datos base
# -----------------------------
@pytest.fixture
def admin(db: Session) -> User:
    u = User(email="admin@example.com", full_name="Studio Admin", role=UserRole.admin)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def client_user(db: Session) -> User:
    u = User(email="client@example.com", full_name="Ana Client", role=UserRole.client)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def other_client(db: Session) -> User:
    u = User(email="other@example.com", full_name="Other Client", role=UserRole.client)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def purchase(db: Session, client_user: User):
    p = register_purchase(
        db,
        client_id=client_user.id,
        package_name="Brand Starter",
        features=["Logo Design", "Brand Guidelines"],
    )
    db.commit()
    return p


@pytest.fixture
def lineage(purchase) -> Lineage:
    return Lineage(purchase.id, "Logo Design")


@pytest.fixture
def auth() -> Callable[[User], Dict[str, str]]:
    def _auth(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _auth
