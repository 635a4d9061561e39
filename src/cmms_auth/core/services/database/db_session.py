"""Database engine and session factory used across the application."""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from src.cmms_auth.runtime.config.config_data import ConfigData
from src.cmms_auth.runtime.context import get_config


class DbSessionService:
    def __init__(self, config: ConfigData | None = None) -> None:
        """Initialize the shared database engine and session factory."""
        config = config or get_config()
        db_config = config.database
        self._url = db_config.url

        engine_kwargs: dict[str, Any] = {
            "pool_pre_ping": True,
            "echo": False,
            "connect_args": self._get_connect_args(config),
        }
        if not self._url.startswith("sqlite"):
            engine_kwargs.update(
                {
                    "pool_size": db_config.pool_size,
                    "max_overflow": db_config.max_overflow,
                    "pool_timeout": db_config.pool_timeout,
                    "pool_recycle": db_config.pool_recycle,
                }
            )

        logger.info(
            "Initializing database engine for environment {} ({})",
            config.app.environment,
            self._url.split("://", 1)[0],
        )
        self._engine = create_engine(self._url, **engine_kwargs)

    def _get_connect_args(self, config: ConfigData) -> dict[str, Any]:
        """Get database-specific connection arguments."""
        connect_args: dict[str, Any] = {}
        if self._url.startswith("postgresql"):
            connect_args.update(
                {
                    "application_name": f"cmms_auth_{config.app.environment}",
                    "connect_timeout": 30,
                }
            )
        elif self._url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            if config.app.environment == "production":
                logger.warning(
                    "SQLite is not recommended for production use. "
                    "Consider PostgreSQL for better performance and reliability."
                )
        return connect_args

    @property
    def engine(self):
        return self._engine

    def create_all(self) -> None:
        """Create the user, identity provider and audit tables."""
        from src.cmms_auth.entities import (  # noqa: F401
            AuditEventTable,
            IdentityProviderConfigTable,
            UserTable,
        )

        SQLModel.metadata.create_all(self._engine)
        logger.info("Database initialized with tables.")

    def get_session(self) -> Session:
        """Return a new SQLModel session bound to the shared engine."""
        return Session(self._engine, expire_on_commit=False, autoflush=True)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        db = self.get_session()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def health_check(self) -> bool:
        """True when a trivial query succeeds."""
        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            logger.error("Database health check failed: {}", type(exc).__name__)
            return False

    def dispose(self) -> None:
        self._engine.dispose()
