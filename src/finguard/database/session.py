"""
FinGuard Database Session Management
Engine construction and transactional session scopes
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from finguard.core.config import Settings, settings as default_settings
from finguard.core.logging import LoggerMixin
from finguard.database.models import Base


SERIALIZABLE = "SERIALIZABLE"


def _sqlite_on_connect(dbapi_connection, connection_record):
    # Transactions are opened explicitly by _sqlite_on_begin
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_on_begin(conn):
    # Take the write lock up front so concurrent writers queue on the busy
    # timeout instead of failing on lock upgrade
    conn.exec_driver_sql("BEGIN IMMEDIATE")


class DatabaseManager(LoggerMixin):
    """
    Owns the engine and hands out short-lived sessions.

    Safe to share between threads; every ``session_scope`` gets its own
    session and connection.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: Optional[bool] = None,
        engine: Optional[Engine] = None,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        self.database_url = database_url or config.DATABASE_URL

        if engine is not None:
            self.engine = engine
        elif self.database_url.startswith("sqlite"):
            # SQLite specific configuration
            self.engine = create_engine(
                self.database_url,
                echo=config.DATABASE_ECHO if echo is None else echo,
                connect_args={"check_same_thread": False, "timeout": 30},
                pool_pre_ping=True,
            )
        else:
            self.engine = create_engine(
                self.database_url,
                echo=config.DATABASE_ECHO if echo is None else echo,
                pool_pre_ping=True,
            )

        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _sqlite_on_connect)
            event.listen(self.engine, "begin", _sqlite_on_begin)

        # Loaded rows stay usable after the scope closes
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    def create_all(self) -> None:
        """Create every table known to the metadata, audit tables included."""
        # Registers the audit tables on Base.metadata
        import finguard.security.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        self.logger.info(f"Database schema ready ({len(Base.metadata.tables)} tables)")

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    @contextmanager
    def session_scope(self, isolation_level: Optional[str] = None) -> Iterator[Session]:
        """
        Transactional scope: commit on success, rollback on any exception.

        SQLite transactions always begin IMMEDIATE, which already serializes
        writers, so ``isolation_level`` only applies to server databases.
        """
        session = self.session_factory()
        try:
            if isolation_level and self.engine.dialect.name != "sqlite":
                session.connection(execution_options={"isolation_level": isolation_level})
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def serializable_scope(self) -> Iterator[Session]:
        return self.session_scope(isolation_level=SERIALIZABLE)

    def dispose(self) -> None:
        self.engine.dispose()
