import logging
from typing import Iterator

from fastapi import HTTPException
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from app.core.config import settings
from app.core.errors import MatchifyError
from app.db.base import Base

logger = logging.getLogger(__name__)


def _connect_args(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # sessions are handed to FastAPI's threadpool
        return {"check_same_thread": False}
    return {"connect_timeout": 30}


# Create the SQLAlchemy engine, once per process
engine = create_engine(settings.DATABASE_URL,
                       connect_args=_connect_args(settings.DATABASE_URL),
                       pool_pre_ping=True,
                       pool_recycle=3600,
)

# Create a configured "Session" class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = engine) -> None:
    """Create the auth tables if they do not exist yet."""
    # models register themselves on Base.metadata when imported
    import app.models.auth  # noqa: F401
    import app.models.users  # noqa: F401

    Base.metadata.create_all(bind=bind)


# do not change the order of the code below
# Dependency that can be used in routes to get the session
def get_db() -> Iterator[Session]:
    db = SessionLocal()  # generate a new SessionLocal
    try:
        yield db
    except Exception as e:
        # leave nothing half-written behind a failed request
        db.rollback()
        if not isinstance(e, (HTTPException, MatchifyError)):
            logger.exception("unhandled error while a database session was open")
        raise
    finally:
        db.close()
