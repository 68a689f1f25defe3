from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .store import SqlJobStore

logger = logging.getLogger(__name__)


class HeartbeatController:
    """Rate-limits lease renewals for the job this worker currently holds."""

    def __init__(
        self,
        store: "SqlJobStore",
        worker_id: str,
        *,
        interval: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.worker_id = worker_id
        self.interval = interval
        self.clock = clock
        self.last_sent_at: float | None = None

    def reset(self) -> None:
        self.last_sent_at = None

    def maybe_heartbeat(self, job_id: uuid.UUID) -> bool:
        now = self.clock()
        if self.last_sent_at is not None and now - self.last_sent_at < self.interval:
            return False
        # Recorded on attempt, so a failing store is not hammered.
        self.last_sent_at = now
        try:
            renewed = self.store.heartbeat(job_id, self.worker_id)
        except Exception as e:
            logger.error("Heartbeat error for job %s: %s", job_id, e)
            return True
        if not renewed:
            logger.warning("Heartbeat for job %s renewed no lease; it may have been rescued", job_id)
        return True
