from contextlib import contextmanager

from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy import create_engine
from .config import settings


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    if url.startswith("postgresql"):
        # Bound every statement so a stuck store fails the caller instead of hanging it
        return {"options": f"-c statement_timeout={settings.db_statement_timeout_ms}"}
    return {}


def build_engine(url: str, **kwargs):
    opts = dict(
        future=True,
        pool_pre_ping=True,
        connect_args=_connect_args(url),
    )
    if not url.startswith("sqlite"):
        opts.update(
            pool_size=5,
            max_overflow=10,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=3600,  # Recycle connections after 1 hour
        )
    opts.update(kwargs)
    return create_engine(url, **opts)


engine = build_engine(settings.database_url)

# IMPORTANT: do not use scoped_session with async frameworks; create a fresh Session per request
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session):
    """Commit on success, roll back on any error. One logical write per block."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
