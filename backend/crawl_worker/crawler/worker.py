from __future__ import annotations

import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

from crawl_worker.models import CrawlJob, FetchResult, SeoSignals
from .actions import build_actions
from .extractor import extract_seo
from .heartbeat import HeartbeatController
from .outcomes import Outcome, best_effort, classify_error
from .store import SqlJobStore
from .urls import normalize_url

logger = logging.getLogger(__name__)


def new_worker_id() -> str:
    return f"worker-{uuid.uuid4().hex[:12]}"


class WorkerState(str, enum.Enum):
    IDLE = "idle"
    JOB_IN_PROGRESS = "job-in-progress"
    BACKOFF = "backoff"


class JobStage(enum.IntEnum):
    CLAIMED = 0
    STARTED = 1
    DISCOVERING = 2
    ANALYZING = 3
    FETCHED = 4
    EXTRACTED = 5
    FINALIZING = 6
    COMPLETED = 7
    FAILED = 8


TERMINAL_STAGES = (JobStage.COMPLETED, JobStage.FAILED)


class StageRegressionError(RuntimeError):
    pass


@dataclass
class JobRun:
    """Progress of the job this worker holds; stages only move forward."""

    job: CrawlJob
    stage: JobStage = JobStage.CLAIMED
    history: list[JobStage] = field(default_factory=lambda: [JobStage.CLAIMED])
    error: str | None = None
    # Set once the URL entry is marked; a re-run would find nothing left to crawl.
    url_recorded: bool = False

    @property
    def finished(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def advance(self, stage: JobStage) -> None:
        if self.finished:
            raise StageRegressionError(f"job {self.job.id} already {self.stage.name.lower()}")
        if stage is not JobStage.FAILED and stage <= self.stage:
            raise StageRegressionError(
                f"job {self.job.id} cannot move from {self.stage.name.lower()} to {stage.name.lower()}"
            )
        self.stage = stage
        self.history.append(stage)


class WorkerLoop:
    """Claims crawl jobs one at a time and drives each through its stages.

    ``run_once`` performs a single iteration and reports the state the worker
    was in; ``run_forever`` adds the idle poll and error backoff pauses. A
    failing job never stops the loop.
    """

    def __init__(
        self,
        store: SqlJobStore,
        fetcher: Callable[[str], FetchResult],
        *,
        worker_id: str | None = None,
        heartbeat_interval: float = 15.0,
        poll_interval: float = 2.0,
        error_backoff: float = 3.0,
        rescue_every: int = 30,
        lease_minutes: int = 10,
        url_lock_minutes: int = 10,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.fetch = fetcher
        self.worker_id = worker_id or new_worker_id()
        self.heartbeat = HeartbeatController(
            store, self.worker_id, interval=heartbeat_interval, clock=clock
        )
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff
        self.rescue_every = max(1, rescue_every)
        self.lease_minutes = lease_minutes
        self.url_lock_minutes = url_lock_minutes
        self.sleep = sleep
        self.iteration = 0
        self.state = WorkerState.IDLE
        self.current: JobRun | None = None
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True

    def pause_after(self, state: WorkerState) -> float:
        if state is WorkerState.IDLE:
            return self.poll_interval
        if state is WorkerState.BACKOFF:
            return self.error_backoff
        return 0.0

    def run_forever(self) -> None:
        logger.info("SEO worker started: %s", self.worker_id)
        while not self._stopped:
            state = self.run_once()
            pause = self.pause_after(state)
            if pause and not self._stopped:
                self.sleep(pause)
        logger.info("SEO worker stopped: %s", self.worker_id)

    def run_once(self) -> WorkerState:
        self.iteration += 1
        if self.iteration % self.rescue_every == 1 or self.rescue_every == 1:
            self._rescue_stale_jobs()

        try:
            job = self.store.claim_next_job(self.worker_id)
            if job is None:
                self.state = WorkerState.IDLE
                return self.state
            self.state = WorkerState.JOB_IN_PROGRESS
            self.current = JobRun(job=job)
            self.process_job(self.current)
        except Exception as e:
            logger.exception("Worker loop error: %s", e)
            self._abandon_current(e)
            self.state = WorkerState.BACKOFF
        finally:
            self.current = None
        return self.state

    def _rescue_stale_jobs(self) -> None:
        result = best_effort(self.store.rescue_stale_jobs, self.lease_minutes, what="Rescue stale jobs")
        if result.ok and result.value:
            logger.info("Rescued stale jobs: %d", result.value)

    def _abandon_current(self, error: Exception) -> None:
        run = self.current
        if run is None or run.finished:
            return
        if classify_error(error) is Outcome.RETRYABLE and not run.url_recorded:
            # Store unreachable; the lease expires and another worker picks it up.
            logger.warning("Leaving job %s for rescue at stage %s", run.job.id, run.stage.name.lower())
            return
        self._fail_job(run, f"Worker error: {error}")

    def _fail_job(self, run: JobRun, message: str) -> None:
        run.advance(JobStage.FAILED)
        run.error = message
        best_effort(self.store.complete_job, run.job.id, False, message, what="Fail job")

    def _beat(self, run: JobRun) -> None:
        self.heartbeat.maybe_heartbeat(run.job.id)

    def process_job(self, run: JobRun) -> JobRun:
        job = run.job
        store = self.store
        self.heartbeat.reset()
        logger.info("Picked job: %s snapshot: %s", job.id, job.snapshot_id)
        self._beat(run)

        store.start_job(job.id)
        run.advance(JobStage.STARTED)
        self._beat(run)

        store.set_snapshot_stage(job.snapshot_id, "discovering")
        run.advance(JobStage.DISCOVERING)
        self._beat(run)

        # Only the seed URL is crawled per job.
        seed = normalize_url(job.seed_url)
        store.enqueue_urls(job.id, job.site_id, job.snapshot_id, [seed], [seed], 0)
        self._beat(run)

        store.set_snapshot_stage(job.snapshot_id, "analyzing")
        run.advance(JobStage.ANALYZING)
        self._beat(run)

        entry = store.claim_next_url(job.id, self.worker_id, self.url_lock_minutes)
        if entry is None:
            store.complete_job(job.id, True)
            run.advance(JobStage.COMPLETED)
            logger.info("Completed job (no urls): %s", job.id)
            return run
        self._beat(run)

        fetched = self.fetch(entry.url)
        run.advance(JobStage.FETCHED)

        if not fetched.ok:
            logger.error(
                "Fetch failed for: %s reason: %s status: %s", entry.url, fetched.error, fetched.status
            )
            store.mark_url_result(
                entry.id,
                False,
                fetched.status,
                fetched.content_type,
                entry.url,
                None,
                fetched.error or "fetch failed",
            )
            self._fail_job(run, f"Fetch failed: {fetched.error or 'unknown'}")
            return run
        self._beat(run)

        final_url = fetched.final_url or entry.url
        signals = extract_seo(fetched.html, final_url) if fetched.html else None
        if signals is not None:
            run.advance(JobStage.EXTRACTED)

        store.mark_url_result(
            entry.id,
            True,
            fetched.status,
            fetched.content_type,
            final_url,
            signals.canonical_url if signals else None,
            None,
        )
        run.url_recorded = True
        self._beat(run)

        if signals is not None:
            page = store.upsert_page(job.site_id, normalize_url(final_url))
            self._beat(run)

            store.upsert_page_metrics(job.snapshot_id, page.id, signals, entry.depth)
            self._beat(run)

            best_effort(self._record_actions, run, signals, page.id, what="Action insert")
            self._beat(run)

        store.set_snapshot_stage(job.snapshot_id, "finalizing")
        run.advance(JobStage.FINALIZING)
        self._beat(run)

        store.complete_job(job.id, True)
        run.advance(JobStage.COMPLETED)
        logger.info("Completed job: %s", job.id)
        return run

    def _record_actions(self, run: JobRun, signals: SeoSignals, page_id: uuid.UUID) -> int:
        actions = build_actions(signals, snapshot_id=run.job.snapshot_id, page_id=page_id)
        return self.store.insert_actions(actions)
