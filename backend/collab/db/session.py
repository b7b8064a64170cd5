from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from collab.core.config import settings


class Base(DeclarativeBase):
    pass


def build_engine(url: str) -> Engine:
    connect_args = {}
    kwargs = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database.
            kwargs["poolclass"] = StaticPool
    else:
        kwargs.update(pool_pre_ping=True, pool_recycle=1800)
    return create_engine(url, connect_args=connect_args, **kwargs)


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False)


def get_engine(testing: bool = False) -> Engine:
    if testing and settings.test_database_url:
        return build_engine(settings.test_database_url)
    return build_engine(settings.database_url)


engine = get_engine()
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine | None = None) -> None:
    from collab.models import meeting  # noqa: F401  registers the tables

    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def db_session(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Iterator[Session]:
    with db_session() as session:
        yield session
