from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

TERMINAL_CHUNK_STATUSES: set[str] = {"completed", "failed"}

CHUNK_STALL_MINUTES = 5
STALL_RESET_MESSAGE = "Auto-reset: chunk was stuck"
MAX_FAILURE_SAMPLES = 10


@dataclass(slots=True, frozen=True)
class ReplacementItem:
    article_id: str
    citation_url: str

    def as_dict(self) -> dict[str, str]:
        return {"article_id": self.article_id, "citation_url": self.citation_url}


@dataclass(slots=True)
class ChunkPlan:
    chunk_number: int
    items: list[ReplacementItem]

    @property
    def article_ids(self) -> list[str]:
        return _unique(item.article_id for item in self.items)


@dataclass(slots=True)
class ChunkCounters:
    progress_current: int = 0
    auto_applied_count: int = 0
    manual_review_count: int = 0
    failed_count: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)

    def record_failure(self, *, article_id: str, citation_url: str, error: str) -> None:
        self.failed_count += 1
        if len(self.failures) < MAX_FAILURE_SAMPLES:
            self.failures.append({"article_id": article_id, "citation_url": citation_url, "error": error})

    @property
    def partial_failure(self) -> bool:
        return self.failed_count > 0


@dataclass(slots=True, frozen=True)
class JobAggregate:
    total_chunks: int
    completed_chunks: int
    failed_chunks: int
    progress_current: int
    articles_processed: int
    auto_applied_count: int
    manual_review_count: int
    failed_count: int
    all_terminal: bool


def plan_chunks(items: Iterable[ReplacementItem], *, chunk_size: int) -> list[ChunkPlan]:
    """Partition work by whole articles so no article is touched by two chunks."""
    size = max(1, chunk_size)
    by_article: dict[str, list[ReplacementItem]] = {}
    seen: set[tuple[str, str]] = set()
    for item in items:
        key = (item.article_id, item.citation_url)
        if key in seen:
            continue
        seen.add(key)
        by_article.setdefault(item.article_id, []).append(item)

    article_ids = list(by_article)
    plans: list[ChunkPlan] = []
    for offset in range(0, len(article_ids), size):
        batch = article_ids[offset : offset + size]
        chunk_items = [item for article_id in batch for item in by_article[article_id]]
        plans.append(ChunkPlan(chunk_number=len(plans) + 1, items=chunk_items))
    return plans


def stall_cutoff(now: datetime | None = None, *, stall_minutes: int = CHUNK_STALL_MINUTES) -> datetime:
    current = now or datetime.now(timezone.utc)
    return current - timedelta(minutes=stall_minutes)


def is_stalled(
    chunk: dict[str, Any],
    *,
    now: datetime | None = None,
    stall_minutes: int = CHUNK_STALL_MINUTES,
) -> bool:
    if chunk.get("status") != "processing":
        return False
    updated_at = _parse_timestamp(chunk.get("updated_at"))
    if updated_at is None:
        return True
    return updated_at < stall_cutoff(now, stall_minutes=stall_minutes)


def aggregate_job(chunks: Sequence[dict[str, Any]]) -> JobAggregate:
    completed = sum(1 for chunk in chunks if chunk.get("status") == "completed")
    failed = sum(1 for chunk in chunks if chunk.get("status") == "failed")
    articles: set[str] = set()
    for chunk in chunks:
        if chunk.get("status") not in TERMINAL_CHUNK_STATUSES:
            continue
        for item in chunk.get("items") or []:
            if isinstance(item, dict) and item.get("article_id"):
                articles.add(str(item["article_id"]))
    return JobAggregate(
        total_chunks=len(chunks),
        completed_chunks=completed,
        failed_chunks=failed,
        progress_current=sum(_as_int(chunk.get("progress_current")) for chunk in chunks),
        articles_processed=len(articles),
        auto_applied_count=sum(_as_int(chunk.get("auto_applied_count")) for chunk in chunks),
        manual_review_count=sum(_as_int(chunk.get("manual_review_count")) for chunk in chunks),
        failed_count=sum(_as_int(chunk.get("failed_count")) for chunk in chunks),
        all_terminal=bool(chunks) and all(chunk.get("status") in TERMINAL_CHUNK_STATUSES for chunk in chunks),
    )


def progress_percentage(progress_current: int | None, progress_total: int | None) -> int:
    total = _as_int(progress_total)
    if total <= 0:
        return 0
    return round((_as_int(progress_current) / total) * 100)


def confidence_from_scores(relevance_score: float | None, authority_score: float | None) -> float:
    """0-10 confidence used to decide between auto-apply and manual review."""
    relevance = relevance_score if relevance_score is not None else 75
    authority = authority_score if authority_score is not None else 7
    if relevance >= 90 and authority >= 8:
        return 9.5
    if relevance >= 85 and authority >= 8:
        return 9.0
    if relevance >= 80 and authority >= 9:
        return 8.5
    if relevance >= 80 and authority >= 8:
        return 8.0
    if relevance >= 75 and authority >= 7:
        return 7.5
    return 5.0


def _unique(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
