# companion/db.py
import logging
from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from companion.entities import Base

logger = logging.getLogger("companion")


def get_db_engine(database_url: str) -> Engine:
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            # one shared connection, otherwise every session sees its own empty database
            kwargs["poolclass"] = StaticPool
        logger.info(f"[DB] Using SQLite URL: {url}")
        return create_engine(url, **kwargs)

    logger.info(f"[DB] Connecting to {url.render_as_string(hide_password=True)}")
    return create_engine(url, pool_pre_ping=True)


def build_db_session_factory(database_url: str) -> Callable[[], Session]:
    engine = get_db_engine(database_url)
    Base.metadata.create_all(engine)
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )
