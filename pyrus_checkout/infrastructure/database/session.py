"""Database session management for checkout persistence"""

from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from pyrus_checkout.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """Pool settings for server databases; SQLite gets a thread-shareable connection"""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 1800,
    }


engine = create_engine(settings.database_url, **engine_options(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; endpoints commit, this only closes"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
