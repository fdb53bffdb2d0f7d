"""
Database connection and session management.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator, Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from smartmess.config import settings
from smartmess.core.exceptions import ConcurrencyConflictError


def build_engine(database_url: str) -> Engine:
    if database_url.lower().startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        echo=False,
    )


engine: Engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting a database session.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """
    Create tables and seed the platform billing defaults.
    """
    from smartmess.models import Base
    from smartmess.seeds import seed_billing_defaults

    target = bind or engine
    Base.metadata.create_all(bind=target)

    db = Session(bind=target)
    try:
        seed_billing_defaults(db)
    finally:
        db.close()


def check_database_connection() -> bool:
    """
    Return True when the database connection is healthy.
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False


def database_health() -> dict[str, Any]:
    """
    Return structured database health details.
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            dialect = connection.dialect
        return {
            "ok": True,
            "dialect": dialect.name,
            "driver": dialect.driver,
            "server_version": ".".join(str(p) for p in (dialect.server_version_info or ())),
        }
    except SQLAlchemyError as exc:
        return {
            "ok": False,
            "error": str(exc),
        }


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    Commit everything written inside the block once, or roll all of it back.

    A version mismatch on a versioned row surfaces as ConcurrencyConflictError.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConcurrencyConflictError(
            "This record was modified by another request. Please retry."
        ) from exc
    except Exception:
        db.rollback()
        raise
