from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from clientdesk.db.session import get_db

router = APIRouter()


@router.get("/ping")
def ping():
    return {"status": "ok"}


@router.get("/db")
def db_ping(db: Session = Depends(get_db)):
    # OperationalError sube al handler global (503)
    db.execute(text("SELECT 1"))
    return {"status": "ok", "database": "up"}
