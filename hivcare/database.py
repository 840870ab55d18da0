"""
Database engine initialisation, session factory and transaction scope.
"""

import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from hivcare.config import DATABASE_ECHO, DATABASE_URL

logger = logging.getLogger(__name__)

Base = declarative_base()


def init_engine(db_uri: Optional[str] = None, **kwargs) -> Engine:
    """Create a SQLAlchemy engine and verify the connection."""
    db_uri = db_uri or DATABASE_URL
    engine = create_engine(db_uri, echo=DATABASE_ECHO, future=True, pool_pre_ping=True, **kwargs)
    if not check_connection(engine):
        print("ERROR: could not connect to DB", file=sys.stderr)
        sys.exit(1)
    logger.info("Connected to DB (%s)", engine.url.get_backend_name())
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """
    One unit of work: commit when the block completes, roll back and re-raise
    on any error.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """Create all tables (development / tests; migrations are out of scope)."""
    from hivcare import entities  # noqa: F401  registers the mappers

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


def check_connection(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
