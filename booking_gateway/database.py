"""Engine and sessions for the booking store.

The API opens one session per request through ``get_db``; scripts use
``session_scope`` and close the session themselves.
"""
import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker


def _build_engine(url: str) -> Engine:
    # SQLite connections are shared with the threadpool FastAPI runs sync routes in.
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


try:
    DATABASE_URL = os.environ["DATABASE_URL"]
except KeyError as error:
    raise RuntimeError("DATABASE_URL must point at the booking database") from error

engine = _build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)
Base = declarative_base()


@contextmanager
def session_scope() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_db() -> Iterator[Session]:
    with session_scope() as session:
        yield session
