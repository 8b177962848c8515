# clientdesk/db/session.py
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from clientdesk.core.settings import settings

ENGINE_URL = settings.SQLALCHEMY_DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # SQLite local/dev: la sesión puede cruzar el threadpool de FastAPI
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 1800,  # keep connections fresh on Heroku
    }


def configure_sqlite(sqlite_engine: Engine) -> Engine:
    """
    pysqlite no emite BEGIN por su cuenta y rompe los SAVEPOINT (begin_nested).
    Tomamos control del BEGIN y activamos las FKs.
    """
    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sqlite_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


engine = create_engine(ENGINE_URL, **_engine_kwargs(ENGINE_URL))
if ENGINE_URL.startswith("sqlite"):
    configure_sqlite(engine)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
