"""Database engine and session management"""
from typing import Generator, Optional

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from devicehub.utils.logger import logger

Base = declarative_base()


class Database:
    """Owns the SQLAlchemy engine and session factory.

    Constructed and connected by the application lifespan (or by a test
    fixture) rather than at import time, so every process decides which
    database it talks to.
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        auto_create: bool = True,
    ):
        self.url = url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_timeout = pool_timeout
        self.pool_recycle = pool_recycle
        self.auto_create = auto_create
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not connected")
        return self._engine

    def connect(self) -> None:
        if self._engine is not None:
            return

        if self.url.startswith("sqlite"):
            # Worker threads of the job engine share the file with request threads
            self._engine = create_engine(self.url, connect_args={"check_same_thread": False, "timeout": 30})
        else:
            self._engine = create_engine(
                self.url,
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_timeout=self.pool_timeout,
                pool_recycle=self.pool_recycle,
                pool_pre_ping=True,
            )
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)

        if self.auto_create:
            # Import models so their tables are registered on Base.metadata
            import devicehub.models  # noqa: F401
            Base.metadata.create_all(bind=self._engine)

        logger.info("Database connected", extra={"action": "db_connect"})

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connection closed", extra={"action": "db_close"})

    def session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Database is not connected")
        return self._session_factory()

    def ping(self) -> bool:
        with self.session() as db:
            db.execute(text("SELECT 1"))
        return True


def get_db(request: Request) -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request"""
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
