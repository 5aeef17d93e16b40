"""
Database connection and setup for the cache store.
SQLite by default, PostgreSQL in production, both through SQLAlchemy.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from discovery_cache.models import Base

logger = logging.getLogger("cache.db")


def create_db_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    connect_timeout: int = 5,
) -> Engine:
    """
    Create the SQLAlchemy engine for the cache store.

    Args:
        database_url: SQLAlchemy URL (sqlite:///..., postgresql://...)
        echo: Log every SQL statement
        pool_size: Connection pool size for server databases
        connect_timeout: Seconds to wait for a new connection (busy timeout for SQLite)
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": connect_timeout},
            echo=echo,
        )

    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        pool_pre_ping=True,
        connect_args={"connect_timeout": connect_timeout},
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> bool:
    """
    Create the cache table if missing.
    Safe to call multiple times (won't recreate existing tables).

    Returns:
        True if the store is reachable and initialized
    """
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        logger.warning(f"Cache database unavailable ({engine.url.render_as_string(hide_password=True)}): {e}")
        return False

    logger.info(f"Cache database initialized at: {engine.url.render_as_string(hide_password=True)}")
    return True


def get_pool_stats(engine: Optional[Engine]) -> Dict[str, Any]:
    """Connection pool statistics for the admin surface."""
    if engine is None:
        return {"connected": False}

    pool = engine.pool
    stats: Dict[str, Any] = {
        "connected": True,
        "status": pool.status(),
    }
    for name in ("size", "checkedin", "checkedout", "overflow"):
        counter = getattr(pool, name, None)
        if callable(counter):
            stats[name] = counter()
    return stats
