from datetime import datetime, timedelta, timezone

from citeguard.domain.chunks import (
    ChunkCounters,
    ReplacementItem,
    aggregate_job,
    confidence_from_scores,
    is_stalled,
    plan_chunks,
    progress_percentage,
)


def _items(*pairs: tuple[str, str]) -> list[ReplacementItem]:
    return [ReplacementItem(article_id=article_id, citation_url=url) for article_id, url in pairs]


def test_plan_chunks_never_splits_an_article_across_chunks() -> None:
    items = _items(
        ("a1", "https://x.org/1"),
        ("a2", "https://x.org/1"),
        ("a1", "https://x.org/2"),
        ("a3", "https://x.org/1"),
        ("a1", "https://x.org/1"),
    )

    plans = plan_chunks(items, chunk_size=2)

    assert [plan.chunk_number for plan in plans] == [1, 2]
    assert plans[0].article_ids == ["a1", "a2"]
    assert plans[1].article_ids == ["a3"]
    assert len(plans[0].items) == 3

    seen: dict[str, int] = {}
    for plan in plans:
        for article_id in plan.article_ids:
            assert article_id not in seen
            seen[article_id] = plan.chunk_number


def test_plan_chunks_returns_empty_list_without_items() -> None:
    assert plan_chunks([], chunk_size=5) == []


def test_is_stalled_only_for_old_processing_chunks() -> None:
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    old = (now - timedelta(minutes=6)).isoformat()
    fresh = (now - timedelta(minutes=1)).isoformat()

    assert is_stalled({"status": "processing", "updated_at": old}, now=now)
    assert not is_stalled({"status": "processing", "updated_at": fresh}, now=now)
    assert not is_stalled({"status": "pending", "updated_at": old}, now=now)


def test_aggregate_job_sums_chunk_counters() -> None:
    chunks = [
        {
            "status": "completed",
            "items": [{"article_id": "a1"}, {"article_id": "a1"}],
            "progress_current": 2,
            "auto_applied_count": 1,
            "manual_review_count": 1,
            "failed_count": 0,
        },
        {
            "status": "failed",
            "items": [{"article_id": "a2"}],
            "progress_current": 1,
            "auto_applied_count": 0,
            "manual_review_count": 0,
            "failed_count": 1,
        },
        {
            "status": "pending",
            "items": [{"article_id": "a3"}],
            "progress_current": 0,
        },
    ]

    aggregate = aggregate_job(chunks)

    assert aggregate.total_chunks == 3
    assert aggregate.completed_chunks == 1
    assert aggregate.failed_chunks == 1
    assert aggregate.progress_current == 3
    assert aggregate.articles_processed == 2
    assert aggregate.auto_applied_count == 1
    assert aggregate.manual_review_count == 1
    assert aggregate.failed_count == 1
    assert not aggregate.all_terminal

    chunks[2]["status"] = "completed"
    assert aggregate_job(chunks).all_terminal


def test_chunk_counters_cap_failure_samples() -> None:
    counters = ChunkCounters()
    for index in range(15):
        counters.record_failure(article_id=f"a{index}", citation_url="https://x.org", error="boom")

    assert counters.failed_count == 15
    assert len(counters.failures) == 10
    assert counters.partial_failure


def test_progress_percentage_handles_empty_jobs() -> None:
    assert progress_percentage(0, 0) == 0
    assert progress_percentage(5, 10) == 50
    assert progress_percentage(None, None) == 0


def test_confidence_table() -> None:
    assert confidence_from_scores(95, 9) == 9.5
    assert confidence_from_scores(86, 8) == 9.0
    assert confidence_from_scores(82, 9) == 8.5
    assert confidence_from_scores(80, 8) == 8.0
    assert confidence_from_scores(76, 7) == 7.5
    assert confidence_from_scores(50, 10) == 5.0
    assert confidence_from_scores(None, None) == 7.5
