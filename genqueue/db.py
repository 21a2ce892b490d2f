from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from genqueue.settings import settings


def make_engine(url: str | None = None) -> Engine:
    url = url or settings.DATABASE_URL
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def init_db(engine: Engine) -> None:
    # registers the tables on SQLModel.metadata
    import genqueue.models  # noqa: F401
    SQLModel.metadata.create_all(engine)
