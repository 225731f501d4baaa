"""
Database Connection Management for the ANPR Event Service

Owns the SQLAlchemy engine and session factory for PostgreSQL (SQLite in
tests) and hands sessions to:

- FastAPI routes, through the ``get_db`` dependency
- CLI scripts, through ``session_scope`` / ``UnitOfWork``

Connection settings come from the ``database`` section of config.yaml and
can be overridden with DB_* variables or a full DATABASE_URL.
"""

import os
import logging
from typing import Generator, Optional, Callable
from contextlib import contextmanager
from functools import lru_cache
from dataclasses import dataclass

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from database.models import Base
from database.monitoring import HealthStatus, check_health
from database.repositories import ListRepository

logger = logging.getLogger(__name__)


# ============================================
# SETTINGS
# ============================================

def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class DatabaseSettings:
    """Connection and pool settings for the events database."""
    host: str = "localhost"
    port: int = 5432
    database: str = "anpr"
    user: str = "anpr"
    password: str = "anpr"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    connect_attempts: int = 3
    echo: bool = False
    url: Optional[str] = None

    @classmethod
    def from_env(cls, defaults=None) -> 'DatabaseSettings':
        """
        Build settings from DB_* variables.

        Args:
            defaults: The ``database`` config section (host, port, name,
                user, password); its values apply when a variable is unset
        """
        section = defaults or cls()
        name = getattr(section, "name", None) or getattr(section, "database", "anpr")
        return cls(
            host=os.getenv("DB_HOST", section.host),
            port=_env_int("DB_PORT", section.port),
            database=os.getenv("DB_NAME", name),
            user=os.getenv("DB_USER", section.user),
            password=os.getenv("DB_PASSWORD", section.password),
            pool_size=_env_int("DB_POOL_SIZE", 5),
            max_overflow=_env_int("DB_MAX_OVERFLOW", 10),
            pool_timeout=_env_int("DB_POOL_TIMEOUT", 30),
            pool_recycle=_env_int("DB_POOL_RECYCLE", 1800),
            connect_attempts=_env_int("DB_CONNECT_ATTEMPTS", 3),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
            url=os.getenv("DATABASE_URL") or None
        )

    def get_url(self) -> str:
        if self.url:
            return self.url
        return (
            f"postgresql+psycopg2://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.get_url().startswith("sqlite")

    def engine_options(self) -> dict:
        """Keyword arguments for create_engine; SQLite keeps its default pool."""
        options = {"echo": self.echo}
        if not self.is_sqlite:
            options.update(
                poolclass=QueuePool,
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_timeout=self.pool_timeout,
                pool_recycle=self.pool_recycle,
                pool_pre_ping=True,
            )
        return options


@lru_cache()
def get_settings() -> DatabaseSettings:
    return DatabaseSettings.from_env()


def connect_retry(attempts: int) -> Callable:
    """
    Retry policy for reaching the database at startup.

    Only OperationalError is retried; the last failure is re-raised.
    """
    return retry(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(OperationalError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


# ============================================
# UNIT OF WORK
# ============================================

class UnitOfWork:
    """
    One session with an explicit commit.

    Leaving the block closes the session; an exception rolls it back first.

    Usage:
        with db_provider.get_unit_of_work() as uow:
            deleted = ANPRService(uow.session).cleanup_old_events(90)
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._session: Optional[Session] = None

    def __enter__(self) -> 'UnitOfWork':
        self._session = self._session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._session is None:
            return
        try:
            if exc_type is not None:
                self._session.rollback()
        finally:
            self._session.close()
            self._session = None

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("UnitOfWork is only usable inside a with block")
        return self._session

    def commit(self) -> None:
        self.session.commit()


# ============================================
# SESSION PROVIDER
# ============================================

class DatabaseSessionProvider:
    """
    Lazily creates the engine and hands out sessions.

    Sessions use ``expire_on_commit=False`` so ORM rows returned by the
    ingestion service stay readable after the commit.
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        self._settings = settings or get_settings()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None

    @property
    def initialized(self) -> bool:
        return self._session_factory is not None

    @property
    def settings(self) -> DatabaseSettings:
        return self._settings

    def init(self, echo: Optional[bool] = None) -> None:
        """
        Create the engine (retrying while the server is unreachable) and
        the session factory. Calling it again is a no-op.
        """
        if self.initialized:
            return

        if echo is not None:
            self._settings.echo = echo

        if self._engine is None:
            self._engine = self._connect()
        else:
            self._register_listeners(self._engine)

        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False
        )
        logger.info("Database ready: dialect=%s", self._engine.dialect.name)

    def _connect(self) -> Engine:
        @connect_retry(self._settings.connect_attempts)
        def attempt() -> Engine:
            engine = create_engine(self._settings.get_url(), **self._settings.engine_options())
            self._register_listeners(engine)
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
            except OperationalError:
                engine.dispose()
                raise
            return engine

        return attempt()

    @staticmethod
    def _register_listeners(engine: Engine) -> None:
        """Pin PostgreSQL sessions to UTC so event_time round-trips unchanged."""
        if engine.dialect.name != "postgresql":
            return

        @event.listens_for(engine, "connect")
        def set_utc(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            try:
                cursor.execute("SET TIME ZONE 'UTC'")
            finally:
                cursor.close()

    @property
    def engine(self) -> Engine:
        self._require_init()
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        self._require_init()
        return self._session_factory

    def _require_init(self) -> None:
        if not self.initialized:
            raise RuntimeError("Database not initialized. Call init() first.")

    def get_session(self) -> Generator[Session, None, None]:
        """Yield a session for one request; commits are left to the caller."""
        self.init()
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    def get_unit_of_work(self) -> UnitOfWork:
        self.init()
        return UnitOfWork(self._session_factory)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on success and rolls back on error."""
        self.init()
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> int:
        """
        Create any missing tables and the default whitelist/blacklist.

        Safe to run on every startup.

        Returns:
            Number of default lists that had to be created
        """
        self.init()
        Base.metadata.create_all(self._engine, checkfirst=True)

        with self.session_scope() as session:
            created = ListRepository(session).seed_defaults()

        logger.info("Database schema ready (%d default lists created)", created)
        return created

    def health_check(self) -> bool:
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error("Database health check failed: %s", e)
            return False

    def health_status(self) -> HealthStatus:
        """Latency and pool usage for /api/v1/health."""
        self.init()
        return check_health(self._engine, self._session_factory)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._session_factory = None


# ============================================
# PROCESS-WIDE PROVIDER
# ============================================

_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider() -> DatabaseSessionProvider:
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider()
    return _db_provider


def init_db(
    settings: Optional[DatabaseSettings] = None,
    echo: Optional[bool] = None
) -> DatabaseSessionProvider:
    """
    Initialize the process-wide provider at startup.

    Args:
        settings: Used only when no provider exists yet
        echo: Override DB_ECHO; None keeps the configured value
    """
    global _db_provider
    if _db_provider is None and settings is not None:
        _db_provider = DatabaseSessionProvider(settings=settings)
    provider = get_db_provider()
    provider.init(echo=echo)
    return provider


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    Usage:
        @app.get("/api/v1/plates")
        def get_plates(db: Session = Depends(get_db)):
            ...
    """
    yield from get_db_provider().get_session()


def close_db() -> None:
    """Dispose of the process-wide provider at shutdown."""
    global _db_provider
    if _db_provider is not None:
        _db_provider.close()
        _db_provider = None


def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """Provider bound to a prepared engine (e.g. in-memory SQLite for tests)."""
    return DatabaseSessionProvider(
        settings=settings or DatabaseSettings(),
        engine=engine
    )
