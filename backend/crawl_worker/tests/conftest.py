import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from crawl_worker.crawler.store import SqlJobStore
from crawl_worker.models import CrawlJob


class FakeNow:
    """Settable wall clock for lease arithmetic."""

    def __init__(self) -> None:
        self.value = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.value

    def advance(self, **kwargs: float) -> None:
        self.value += timedelta(**kwargs)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine: Engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@pytest.fixture
def fake_now() -> FakeNow:
    return FakeNow()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(engine: Engine, fake_now: FakeNow) -> SqlJobStore:
    return SqlJobStore(engine, now=fake_now)


@pytest.fixture
def site_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def queued_job(store: SqlJobStore, site_id: uuid.UUID) -> CrawlJob:
    return store.queue_job(site_id, "https://Example.com/Page/?utm_source=x#frag")
