from sqlalchemy.engine import Engine
from sqlmodel import create_engine

from crawl_worker.core.config import Settings


def build_engine(config: Settings) -> Engine:
    return create_engine(str(config.SQLALCHEMY_DATABASE_URI), pool_pre_ping=True)
