import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from src.config import get_database_url
from src.models import Base

logger = logging.getLogger(__name__)


def get_engine(database_url: str = None):
    """
    Create and return a SQLAlchemy engine

    SQLite (the default) is used as-is. For server databases connection pooling
    is enabled:
    - pool_pre_ping: Verify connections before using (handle stale connections)
    - pool_size: Number of connections to maintain in pool
    - max_overflow: Additional connections allowed when pool is full
    - pool_recycle: Recycle connections after 1 hour
    """
    database_url = database_url or get_database_url()

    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,
        echo=False,  # Set to True for SQL debugging
    )


def init_db(engine=None):
    """Initialize the database by creating all tables"""
    if engine is None:
        engine = get_engine()

    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized at: %s", engine.url)


def get_session() -> Session:
    """Get a new database session"""
    engine = get_engine()
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return SessionLocal()


def get_db():
    """FastAPI dependency yielding a session that is closed after the request"""
    db = get_session()
    try:
        yield db
    finally:
        db.close()
