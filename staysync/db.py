from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from . import models  # noqa: F401  (registers tables on SQLModel.metadata)
from .config import DATABASE_URL


def make_engine(url: str = DATABASE_URL) -> Engine:
    if url.startswith("sqlite"):
        # repositories are called from worker threads via asyncio.to_thread
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = make_engine()


def init_db(bind: Engine | None = None):
    SQLModel.metadata.create_all(bind or engine)


@contextmanager
def get_session(bind: Engine | None = None):
    s = Session(bind or engine)
    try:
        yield s
    finally:
        s.close()
