from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from crawl_worker.models import (
    Action,
    CrawlJob,
    Page,
    PageSnapshotMetrics,
    SeoSignals,
    Snapshot,
    UrlQueueEntry,
    utcnow,
)

logger = logging.getLogger(__name__)

LEASED_JOB_STATUSES = ("claimed", "running")
SNAPSHOT_STAGES = ("discovering", "analyzing", "finalizing")


class SqlJobStore:
    """Job queue and result store shared by every worker process.

    Each operation runs in its own transaction. Claims are compare-and-swap
    updates guarded by the current status, so exactly one concurrent claimant
    wins a row; on PostgreSQL the candidate select also skips rows locked by
    other claimants.
    """

    def __init__(self, engine: Engine, *, now: Callable[[], datetime] = utcnow, claim_attempts: int = 3):
        self.engine = engine
        self.now = now
        self.claim_attempts = claim_attempts

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self.engine, expire_on_commit=False) as session:
            yield session

    # Producer side

    def queue_job(self, site_id: uuid.UUID, seed_url: str) -> CrawlJob:
        with self._session() as session:
            now = self.now()
            snapshot = Snapshot(site_id=site_id, created_at=now)
            session.add(snapshot)
            session.flush()
            job = CrawlJob(site_id=site_id, snapshot_id=snapshot.id, seed_url=seed_url, created_at=now)
            session.add(job)
            session.commit()
            session.refresh(job)
            return job

    # Job lifecycle

    def claim_next_job(self, worker_id: str) -> CrawlJob | None:
        for _ in range(self.claim_attempts):
            with self._session() as session:
                candidate = session.exec(
                    select(CrawlJob.id)
                    .where(CrawlJob.status == "queued")
                    .order_by(col(CrawlJob.created_at))
                    .limit(1)
                    .with_for_update(skip_locked=True)
                ).first()
                if candidate is None:
                    return None
                now = self.now()
                result = session.exec(  # type: ignore[call-overload]
                    update(CrawlJob)
                    .where(col(CrawlJob.id) == candidate, col(CrawlJob.status) == "queued")
                    .values(status="claimed", locked_by=worker_id, locked_at=now, heartbeat_at=now)
                )
                session.commit()
                if result.rowcount == 1:
                    return session.get(CrawlJob, candidate)
            # Lost the race for this row; try the next one.
        return None

    def rescue_stale_jobs(self, lease_minutes: int) -> int:
        now = self.now()
        cutoff = now - timedelta(minutes=lease_minutes)
        with self._session() as session:
            stale = list(
                session.exec(
                    select(CrawlJob.id).where(
                        col(CrawlJob.status).in_(LEASED_JOB_STATUSES),
                        col(CrawlJob.heartbeat_at) < cutoff,
                    )
                    .with_for_update(skip_locked=True)
                ).all()
            )
            rescued = 0
            if stale:
                jobs = session.exec(  # type: ignore[call-overload]
                    update(CrawlJob)
                    .where(
                        col(CrawlJob.id).in_(stale),
                        col(CrawlJob.status).in_(LEASED_JOB_STATUSES),
                        col(CrawlJob.heartbeat_at) < cutoff,
                    )
                    .values(status="queued", locked_by=None, locked_at=None, heartbeat_at=None)
                )
                rescued = jobs.rowcount
            # URLs held by a rescued job go back with it, whatever their own lock says.
            entries = session.exec(  # type: ignore[call-overload]
                update(UrlQueueEntry)
                .where(
                    col(UrlQueueEntry.status) == "claimed",
                    or_(col(UrlQueueEntry.job_id).in_(stale), col(UrlQueueEntry.locked_until) < now),
                )
                .values(status="pending", locked_by=None, locked_until=None)
            )
            session.commit()
        if entries.rowcount:
            logger.info("Released %d URL leases", entries.rowcount)
        return rescued

    def start_job(self, job_id: uuid.UUID) -> None:
        with self._session() as session:
            session.exec(  # type: ignore[call-overload]
                update(CrawlJob)
                .where(col(CrawlJob.id) == job_id, col(CrawlJob.status) == "claimed")
                .values(status="running", started_at=self.now())
            )
            session.commit()

    def heartbeat(self, job_id: uuid.UUID, worker_id: str) -> bool:
        with self._session() as session:
            result = session.exec(  # type: ignore[call-overload]
                update(CrawlJob)
                .where(
                    col(CrawlJob.id) == job_id,
                    col(CrawlJob.locked_by) == worker_id,
                    col(CrawlJob.status).in_(LEASED_JOB_STATUSES),
                )
                .values(heartbeat_at=self.now())
            )
            session.commit()
        return result.rowcount == 1

    def set_snapshot_stage(self, snapshot_id: uuid.UUID, stage: str) -> None:
        if stage not in SNAPSHOT_STAGES:
            raise ValueError(f"Unknown snapshot stage: {stage}")
        with self._session() as session:
            result = session.exec(  # type: ignore[call-overload]
                update(Snapshot)
                .where(col(Snapshot.id) == snapshot_id)
                .values(progress_step=stage, updated_at=self.now())
            )
            session.commit()
        if not result.rowcount:
            logger.warning("Snapshot %s not found while setting stage %s", snapshot_id, stage)

    def complete_job(self, job_id: uuid.UUID, success: bool, error: str | None = None) -> bool:
        with self._session() as session:
            result = session.exec(  # type: ignore[call-overload]
                update(CrawlJob)
                .where(col(CrawlJob.id) == job_id, col(CrawlJob.status).in_(LEASED_JOB_STATUSES))
                .values(
                    status="completed" if success else "failed",
                    error=None if success else (error or "worker error"),
                    finished_at=self.now(),
                    locked_by=None,
                )
            )
            session.commit()
        if not result.rowcount:
            logger.warning("Job %s was not in a leased state; completion not recorded", job_id)
        return result.rowcount == 1

    # URL queue

    def enqueue_urls(
        self,
        job_id: uuid.UUID,
        site_id: uuid.UUID,
        snapshot_id: uuid.UUID,
        urls: Sequence[str],
        normalized_urls: Sequence[str],
        depth: int,
    ) -> int:
        if len(urls) != len(normalized_urls):
            raise ValueError("urls and normalized_urls must have the same length")
        added = 0
        with self._session() as session:
            existing = set(
                session.exec(
                    select(UrlQueueEntry.normalized_url).where(UrlQueueEntry.job_id == job_id)
                ).all()
            )
            for url, normalized in zip(urls, normalized_urls):
                if normalized in existing:
                    continue
                existing.add(normalized)
                session.add(
                    UrlQueueEntry(
                        job_id=job_id,
                        site_id=site_id,
                        snapshot_id=snapshot_id,
                        url=url,
                        normalized_url=normalized,
                        depth=depth,
                        created_at=self.now(),
                    )
                )
                added += 1
            session.commit()
        return added

    def claim_next_url(self, job_id: uuid.UUID, worker_id: str, lock_minutes: int) -> UrlQueueEntry | None:
        for _ in range(self.claim_attempts):
            with self._session() as session:
                candidate = session.exec(
                    select(UrlQueueEntry.id)
                    .where(UrlQueueEntry.job_id == job_id, UrlQueueEntry.status == "pending")
                    .order_by(col(UrlQueueEntry.depth), col(UrlQueueEntry.created_at))
                    .limit(1)
                    .with_for_update(skip_locked=True)
                ).first()
                if candidate is None:
                    return None
                result = session.exec(  # type: ignore[call-overload]
                    update(UrlQueueEntry)
                    .where(col(UrlQueueEntry.id) == candidate, col(UrlQueueEntry.status) == "pending")
                    .values(
                        status="claimed",
                        locked_by=worker_id,
                        locked_until=self.now() + timedelta(minutes=lock_minutes),
                    )
                )
                session.commit()
                if result.rowcount == 1:
                    return session.get(UrlQueueEntry, candidate)
        return None

    def mark_url_result(
        self,
        queue_id: uuid.UUID,
        success: bool,
        http_status: int | None,
        content_type: str | None,
        final_url: str | None,
        canonical_url: str | None,
        error: str | None,
    ) -> None:
        with self._session() as session:
            session.exec(  # type: ignore[call-overload]
                update(UrlQueueEntry)
                .where(col(UrlQueueEntry.id) == queue_id)
                .values(
                    status="done" if success else "failed",
                    http_status=http_status,
                    content_type=content_type,
                    final_url=final_url,
                    canonical_url=canonical_url,
                    error=error,
                    fetched_at=self.now(),
                    locked_by=None,
                    locked_until=None,
                )
            )
            session.commit()

    # Results

    def upsert_page(self, site_id: uuid.UUID, url: str) -> Page:
        statement = select(Page).where(Page.site_id == site_id, Page.url == url)
        with self._session() as session:
            page = session.exec(statement).first()
            if page:
                return page
            page = Page(site_id=site_id, url=url)
            session.add(page)
            try:
                session.commit()
            except IntegrityError:
                # Another worker inserted the same page first.
                session.rollback()
                return session.exec(statement).one()
            session.refresh(page)
            return page

    def upsert_page_metrics(
        self, snapshot_id: uuid.UUID, page_id: uuid.UUID, signals: SeoSignals, depth: int
    ) -> PageSnapshotMetrics:
        values = {
            "indexable": signals.indexable,
            "canonical_ok": signals.canonical_ok,
            "has_title": signals.has_title,
            "has_meta": signals.has_meta,
            "has_h1": signals.has_h1,
            "h1_count": signals.h1_count,
            "schema_types": list(signals.schema_types),
            "internal_link_depth": depth,
            "structural_score": signals.structural_score,
            "updated_at": self.now(),
        }
        with self._session() as session:
            metrics = session.exec(
                select(PageSnapshotMetrics).where(
                    PageSnapshotMetrics.snapshot_id == snapshot_id,
                    PageSnapshotMetrics.page_id == page_id,
                )
            ).first()
            if metrics:
                for field, value in values.items():
                    setattr(metrics, field, value)
            else:
                metrics = PageSnapshotMetrics(snapshot_id=snapshot_id, page_id=page_id, **values)
            session.add(metrics)
            session.commit()
            session.refresh(metrics)
            return metrics

    def insert_actions(self, rows: Sequence[Action]) -> int:
        if not rows:
            return 0
        with self._session() as session:
            session.add_all(rows)
            session.commit()
        return len(rows)
