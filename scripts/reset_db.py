# scripts/reset_db.py
from __future__ import annotations
from sqlalchemy import text
from clientdesk.db.base import Base
from clientdesk.db.session import engine
import clientdesk.models  # noqa: F401

# ⚠️ Esto borra TODO.
# Úsalo solo en tu entorno local de desarrollo; después corre `alembic upgrade head`.
if engine.dialect.name == "postgresql":
    with engine.begin() as conn:
        conn.execute(text("DROP SCHEMA public CASCADE;"))
        conn.execute(text("CREATE SCHEMA public;"))
else:
    Base.metadata.drop_all(bind=engine)
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE IF EXISTS alembic_version"))
print("[OK] schema dropped")
