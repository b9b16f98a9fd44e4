import logging

from sqlalchemy.engine import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from config import DATABASE_URL
from database.models import Base

logger = logging.getLogger(__name__)


def make_engine(url: str = DATABASE_URL):
    """Create an engine; SQLite connections may be used from worker threads"""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


# Create engine
engine = make_engine()

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_tables(bind=None):
    """Create all database tables"""
    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Error creating tables: {e}")
        raise
