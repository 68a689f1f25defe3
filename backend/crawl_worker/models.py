import uuid
from datetime import datetime, timezone

from pydantic import BaseModel
from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Snapshot(SQLModel, table=True):
    __tablename__ = "snapshot"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    site_id: uuid.UUID = Field(index=True)
    progress_step: str | None = Field(default=None, max_length=32)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


class CrawlJob(SQLModel, table=True):
    __tablename__ = "crawl_job"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    site_id: uuid.UUID = Field(index=True)
    snapshot_id: uuid.UUID = Field(foreign_key="snapshot.id", index=True)
    seed_url: str = Field(max_length=2048)
    # queued -> claimed -> running -> completed | failed
    status: str = Field(default="queued", max_length=32, index=True)
    locked_by: str | None = Field(default=None, max_length=128)
    locked_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    heartbeat_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    started_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    finished_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


class UrlQueueEntry(SQLModel, table=True):
    __tablename__ = "url_queue"
    __table_args__ = (UniqueConstraint("job_id", "normalized_url"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    job_id: uuid.UUID = Field(foreign_key="crawl_job.id", index=True)
    site_id: uuid.UUID
    snapshot_id: uuid.UUID
    url: str = Field(max_length=2048)
    normalized_url: str = Field(max_length=2048)
    depth: int = 0
    # pending -> claimed -> done | failed
    status: str = Field(default="pending", max_length=32, index=True)
    locked_by: str | None = Field(default=None, max_length=128)
    locked_until: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    http_status: int | None = None
    content_type: str | None = Field(default=None, max_length=255)
    final_url: str | None = Field(default=None, max_length=2048)
    canonical_url: str | None = Field(default=None, max_length=2048)
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    fetched_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


class Page(SQLModel, table=True):
    __tablename__ = "page"
    __table_args__ = (UniqueConstraint("site_id", "url"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    site_id: uuid.UUID = Field(index=True)
    url: str = Field(max_length=2048)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class PageSnapshotMetrics(SQLModel, table=True):
    __tablename__ = "page_snapshot_metrics"
    __table_args__ = (UniqueConstraint("snapshot_id", "page_id"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    snapshot_id: uuid.UUID = Field(foreign_key="snapshot.id", index=True)
    page_id: uuid.UUID = Field(foreign_key="page.id", index=True)
    indexable: bool
    canonical_ok: bool
    has_title: bool
    has_meta: bool
    has_h1: bool
    h1_count: int = 0
    schema_types: list[str] = Field(default_factory=list, sa_column=Column(JSONType, nullable=False))
    internal_link_depth: int = 0
    structural_score: int
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Action(SQLModel, table=True):
    __tablename__ = "action"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    snapshot_id: uuid.UUID = Field(foreign_key="snapshot.id", index=True)
    page_id: uuid.UUID = Field(foreign_key="page.id", index=True)
    action_type: str = Field(max_length=64, index=True)
    summary: str = Field(max_length=255)
    title: str = Field(max_length=255)
    why_it_matters: str
    technical_reason: str
    expected_impact_range: str = Field(max_length=64)
    severity: str = Field(max_length=16)
    priority: str = Field(max_length=16)
    status: str = Field(default="open", max_length=32)
    steps: list[str] = Field(default_factory=list, sa_column=Column(JSONType, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


# Derived values, never stored as rows of their own


class SeoSignals(BaseModel):
    has_title: bool = False
    has_meta: bool = False
    has_h1: bool = False
    h1_count: int = 0
    indexable: bool = True
    canonical_ok: bool = True
    canonical_url: str | None = None
    schema_types: list[str] = []
    structural_score: int = 0


class FetchResult(BaseModel):
    ok: bool
    status: int | None = None
    content_type: str | None = None
    final_url: str
    html: str | None = None
    error: str | None = None
    # "timeout" | "transport" | "http"
    error_kind: str | None = None
