from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from .config import settings

# check_same_thread=False: FastAPI serves sync endpoints from a thread pool
engine = create_engine(
    settings.resolved_database_url,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
)


@event.listens_for(engine, "connect")
def enable_sqlite_fk(dbapi_connection, _):
    if not settings.database_url.startswith("sqlite"):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


# FastAPI dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session):
    """
    Commit everything written inside the block, or nothing.

    Series-wide changes (creation, apply-to-future edits, cascaded
    cancellations) run inside one unit of work.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
