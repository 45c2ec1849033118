"""
Database handle: engine + session factory with an explicit start/dispose lifecycle.
Owned by the application (created in the FastAPI lifespan, or by a Celery task)
and injected where needed; there is no module-level engine.
"""
from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.db.base import Base


class Database:
    def __init__(
        self,
        url: str,
        *,
        pool_size: int | None = None,
        max_overflow: int | None = None,
        pool_recycle: int | None = None,
    ) -> None:
        self.url = url
        self._pool_size = pool_size if pool_size is not None else settings.db_pool_size
        self._max_overflow = max_overflow if max_overflow is not None else settings.db_max_overflow
        self._pool_recycle = pool_recycle if pool_recycle is not None else settings.db_pool_recycle
        self._engine: Engine | None = None
        self._sessionmaker: sessionmaker | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not started")
        return self._engine

    def start(self) -> "Database":
        if self._engine is not None:
            return self
        if self.url.startswith("sqlite"):
            kwargs: dict = {"connect_args": {"check_same_thread": False}}
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            self._engine = create_engine(self.url, **kwargs)
        else:
            self._engine = create_engine(
                self.url,
                pool_pre_ping=True,
                pool_size=self._pool_size,
                max_overflow=self._max_overflow,
                pool_recycle=self._pool_recycle,  # recycle connections (avoid stale)
                connect_args={"connect_timeout": 5},
            )
        self._sessionmaker = sessionmaker(bind=self._engine, autocommit=False, autoflush=False)
        return self

    def create_all(self) -> None:
        # Registers all tables on Base.metadata
        from app.models import (  # noqa: F401
            notification,
            product,
            product_comment,
            product_rating,
            purchase,
            user,
        )

        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    def session(self) -> Session:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not started")
        return self._sessionmaker()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        db = self.session()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def __enter__(self) -> "Database":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.dispose()


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request) -> Iterator[Session]:
    db = get_database(request).session()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
