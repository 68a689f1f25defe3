import uuid

import pytest
from sqlmodel import Session, select

from crawl_worker.crawler.store import SqlJobStore
from crawl_worker.models import Action, CrawlJob, Page, PageSnapshotMetrics, SeoSignals, Snapshot, UrlQueueEntry


def _job(db: Session, job_id: uuid.UUID) -> CrawlJob:
    db.expire_all()
    job = db.get(CrawlJob, job_id)
    assert job is not None
    return job


def test_queue_job_creates_snapshot_and_queued_job(store: SqlJobStore, db: Session, site_id) -> None:
    job = store.queue_job(site_id, "https://example.com/")
    assert job.status == "queued"
    snapshot = db.get(Snapshot, job.snapshot_id)
    assert snapshot is not None
    assert snapshot.site_id == site_id


def test_claim_next_job_is_exclusive(store: SqlJobStore, db: Session, queued_job: CrawlJob) -> None:
    claimed = store.claim_next_job("worker-a")
    assert claimed is not None
    assert claimed.id == queued_job.id
    assert claimed.status == "claimed"
    assert claimed.locked_by == "worker-a"
    assert store.claim_next_job("worker-b") is None


def test_claim_next_job_takes_oldest_first(store: SqlJobStore, site_id, fake_now) -> None:
    first = store.queue_job(site_id, "https://example.com/a")
    fake_now.advance(seconds=1)
    store.queue_job(site_id, "https://example.com/b")
    claimed = store.claim_next_job("worker-a")
    assert claimed is not None
    assert claimed.id == first.id


def test_claim_on_empty_queue(store: SqlJobStore) -> None:
    assert store.claim_next_job("worker-a") is None


def test_job_lifecycle(store: SqlJobStore, db: Session, queued_job: CrawlJob) -> None:
    store.claim_next_job("worker-a")
    store.start_job(queued_job.id)
    assert _job(db, queued_job.id).status == "running"
    assert store.heartbeat(queued_job.id, "worker-a")
    assert not store.heartbeat(queued_job.id, "worker-b")
    assert store.complete_job(queued_job.id, True)
    job = _job(db, queued_job.id)
    assert job.status == "completed"
    assert job.error is None
    assert job.finished_at is not None
    # Terminal states are reported once.
    assert not store.complete_job(queued_job.id, False, "late")
    assert _job(db, queued_job.id).status == "completed"


def test_failed_job_keeps_error(store: SqlJobStore, db: Session, queued_job: CrawlJob) -> None:
    store.claim_next_job("worker-a")
    assert store.complete_job(queued_job.id, False, "Fetch failed: timeout after 15s")
    job = _job(db, queued_job.id)
    assert job.status == "failed"
    assert job.error == "Fetch failed: timeout after 15s"


def test_rescue_returns_stale_jobs_to_queue(store: SqlJobStore, db: Session, queued_job: CrawlJob, fake_now) -> None:
    store.claim_next_job("worker-a")
    store.start_job(queued_job.id)
    fake_now.advance(minutes=9)
    assert store.rescue_stale_jobs(10) == 0
    fake_now.advance(minutes=2)
    assert store.rescue_stale_jobs(10) == 1
    job = _job(db, queued_job.id)
    assert job.status == "queued"
    assert job.locked_by is None
    assert store.claim_next_job("worker-b") is not None


def test_heartbeat_keeps_lease_alive(store: SqlJobStore, queued_job: CrawlJob, fake_now) -> None:
    store.claim_next_job("worker-a")
    fake_now.advance(minutes=8)
    store.heartbeat(queued_job.id, "worker-a")
    fake_now.advance(minutes=8)
    assert store.rescue_stale_jobs(10) == 0


def test_enqueue_urls_skips_duplicates(store: SqlJobStore, db: Session, queued_job: CrawlJob) -> None:
    job = queued_job
    url = "https://example.com/Page"
    assert store.enqueue_urls(job.id, job.site_id, job.snapshot_id, [url], [url], 0) == 1
    assert store.enqueue_urls(job.id, job.site_id, job.snapshot_id, [url], [url], 0) == 0
    entries = db.exec(select(UrlQueueEntry).where(UrlQueueEntry.job_id == job.id)).all()
    assert len(entries) == 1
    assert entries[0].depth == 0
    assert entries[0].status == "pending"


def test_enqueue_urls_rejects_mismatched_lists(store: SqlJobStore, queued_job: CrawlJob) -> None:
    job = queued_job
    with pytest.raises(ValueError):
        store.enqueue_urls(job.id, job.site_id, job.snapshot_id, ["a", "b"], ["a"], 0)


def test_claim_next_url_and_mark_result(store: SqlJobStore, db: Session, queued_job: CrawlJob, fake_now) -> None:
    job = queued_job
    url = "https://example.com/Page"
    store.enqueue_urls(job.id, job.site_id, job.snapshot_id, [url], [url], 0)
    entry = store.claim_next_url(job.id, "worker-a", 10)
    assert entry is not None
    assert entry.status == "claimed"
    assert entry.locked_by == "worker-a"
    assert store.claim_next_url(job.id, "worker-b", 10) is None

    store.mark_url_result(entry.id, False, None, None, url, None, "timeout after 15s")
    db.expire_all()
    marked = db.get(UrlQueueEntry, entry.id)
    assert marked.status == "failed"
    assert marked.error == "timeout after 15s"
    assert marked.locked_by is None
    assert marked.fetched_at is not None


def test_rescue_releases_expired_url_leases(store: SqlJobStore, db: Session, queued_job: CrawlJob, fake_now) -> None:
    job = queued_job
    url = "https://example.com/Page"
    store.enqueue_urls(job.id, job.site_id, job.snapshot_id, [url], [url], 0)
    entry = store.claim_next_url(job.id, "worker-a", 10)
    fake_now.advance(minutes=11)
    store.rescue_stale_jobs(10)
    db.expire_all()
    assert db.get(UrlQueueEntry, entry.id).status == "pending"


def test_set_snapshot_stage(store: SqlJobStore, db: Session, queued_job: CrawlJob) -> None:
    store.set_snapshot_stage(queued_job.snapshot_id, "analyzing")
    db.expire_all()
    assert db.get(Snapshot, queued_job.snapshot_id).progress_step == "analyzing"
    with pytest.raises(ValueError):
        store.set_snapshot_stage(queued_job.snapshot_id, "bogus")


def test_upsert_page_is_idempotent(store: SqlJobStore, db: Session, site_id) -> None:
    first = store.upsert_page(site_id, "https://example.com/Page")
    second = store.upsert_page(site_id, "https://example.com/Page")
    assert first.id == second.id
    other_site = store.upsert_page(uuid.uuid4(), "https://example.com/Page")
    assert other_site.id != first.id
    assert len(db.exec(select(Page)).all()) == 2


def test_upsert_page_metrics_overwrites(store: SqlJobStore, db: Session, queued_job: CrawlJob) -> None:
    page = store.upsert_page(queued_job.site_id, "https://example.com/Page")
    signals = SeoSignals(has_title=False, has_meta=True, has_h1=True, h1_count=1, structural_score=75)
    store.upsert_page_metrics(queued_job.snapshot_id, page.id, signals, 0)
    better = signals.model_copy(update={"has_title": True, "structural_score": 100, "schema_types": ["WebPage"]})
    store.upsert_page_metrics(queued_job.snapshot_id, page.id, better, 0)

    rows = db.exec(select(PageSnapshotMetrics)).all()
    assert len(rows) == 1
    assert rows[0].has_title
    assert rows[0].structural_score == 100
    assert rows[0].schema_types == ["WebPage"]
    assert rows[0].internal_link_depth == 0


def test_insert_actions(store: SqlJobStore, db: Session, queued_job: CrawlJob) -> None:
    page = store.upsert_page(queued_job.site_id, "https://example.com/Page")
    assert store.insert_actions([]) == 0
    action = Action(
        snapshot_id=queued_job.snapshot_id,
        page_id=page.id,
        action_type="missing_h1",
        summary="Missing H1",
        title="Add an H1 heading",
        why_it_matters="x",
        technical_reason="y",
        expected_impact_range="Low",
        severity="low",
        priority="low",
        steps=["Add one clear H1 describing the page topic."],
    )
    assert store.insert_actions([action]) == 1
    assert len(db.exec(select(Action)).all()) == 1


def test_rescue_releases_urls_held_by_rescued_job(store: SqlJobStore, db: Session, queued_job: CrawlJob, fake_now) -> None:
    job = queued_job
    url = "https://example.com/Page"
    store.claim_next_job("worker-a")
    store.enqueue_urls(job.id, job.site_id, job.snapshot_id, [url], [url], 0)
    fake_now.advance(minutes=1)
    entry = store.claim_next_url(job.id, "worker-a", 10)
    fake_now.advance(minutes=9, seconds=30)

    assert store.rescue_stale_jobs(10) == 1
    db.expire_all()
    released = db.get(UrlQueueEntry, entry.id)
    assert released.status == "pending"
    assert released.locked_by is None
    assert store.claim_next_url(job.id, "worker-b", 10) is not None


def test_rescue_leaves_urls_of_live_jobs_alone(store: SqlJobStore, db: Session, queued_job: CrawlJob, fake_now) -> None:
    job = queued_job
    url = "https://example.com/Page"
    store.claim_next_job("worker-a")
    store.enqueue_urls(job.id, job.site_id, job.snapshot_id, [url], [url], 0)
    entry = store.claim_next_url(job.id, "worker-a", 10)
    fake_now.advance(minutes=5)

    assert store.rescue_stale_jobs(10) == 0
    db.expire_all()
    assert db.get(UrlQueueEntry, entry.id).status == "claimed"
