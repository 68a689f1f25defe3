"""
Process entrypoint: check configuration, set up logging, build the store and
fetcher, then run the worker loop until SIGINT/SIGTERM.
"""

import logging
import signal
import sys

from crawl_worker.core.config import Settings, settings
from crawl_worker.core.db import build_engine
from crawl_worker.crawler.fetcher import DocumentFetcher
from crawl_worker.crawler.store import SqlJobStore
from crawl_worker.crawler.worker import WorkerLoop

logger = logging.getLogger("crawl_worker")


def setup_logging(config: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_worker(config: Settings, fetcher: DocumentFetcher) -> WorkerLoop:
    store = SqlJobStore(build_engine(config))
    return WorkerLoop(
        store,
        fetcher.fetch,
        worker_id=config.WORKER_ID,
        heartbeat_interval=config.HEARTBEAT_INTERVAL_SECONDS,
        poll_interval=config.WORKER_POLL_INTERVAL_SECONDS,
        error_backoff=config.WORKER_ERROR_BACKOFF_SECONDS,
        rescue_every=config.WORKER_RESCUE_EVERY,
        lease_minutes=config.JOB_LEASE_MINUTES,
        url_lock_minutes=config.URL_LOCK_MINUTES,
    )


def main(config: Settings | None = None) -> None:
    config = config or settings
    setup_logging(config)

    missing = config.missing_store_settings()
    if missing:
        logger.error("Missing required configuration: %s", ", ".join(missing))
        sys.exit(1)

    with DocumentFetcher(
        timeout=config.FETCH_TIMEOUT_SECONDS,
        max_redirects=config.FETCH_MAX_REDIRECTS,
        max_bytes=config.FETCH_MAX_BYTES,
        user_agent=config.CRAWLER_USER_AGENT,
    ) as fetcher:
        worker = build_worker(config, fetcher)

        def signal_handler(signum, frame):
            logger.info("Received signal %s, stopping after the current iteration", signum)
            worker.stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        worker.run_forever()


if __name__ == "__main__":
    main()
