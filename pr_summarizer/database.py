"""
Database configuration and connection management.
"""

import asyncio
import logging
from typing import Any, Dict

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Create declarative base
Base = declarative_base()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create the SQLAlchemy engine for a database URL.

    SQLite connections are shared across threads so the in-process API
    worker threads can use the same file or in-memory database.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=echo,
        )
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Engine) -> None:
    """Create database tables."""
    # Register ORM models on Base.metadata
    from pr_summarizer.models import models  # noqa: F401

    try:
        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables: {e}")
        raise


class DatabaseManager:
    """Database manager for handling connections and health checks."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _ping(self) -> bool:
        with self.engine.connect() as connection:
            return connection.execute(text("SELECT 1")).scalar() == 1

    async def health_check(self) -> bool:
        """
        Check database health.

        Returns:
            bool: True if database is healthy, False otherwise
        """
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._ping)
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def get_connection_info(self) -> Dict[str, Any]:
        """
        Get database connection information.

        Returns:
            dict: Connection information
        """
        url = self.engine.url
        return {
            "status": "connected",
            "dialect": url.get_backend_name(),
            "database": url.database or "unknown",
            "host": url.host or "local",
        }
