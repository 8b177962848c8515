# scripts/db_check.py
from sqlalchemy import text
from clientdesk.db.session import engine

with engine.connect() as conn:
    if engine.dialect.name == "postgresql":
        ver = conn.execute(text("select version()")).scalar_one()
        db  = conn.execute(text("select current_database()")).scalar_one()
    else:
        ver = conn.execute(text("select sqlite_version()")).scalar_one()
        db  = engine.url.database
    print("OK DB:", ver)
    print("Current DB:", db)
