from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime
import logging
from typing import Any, Literal

from opentelemetry import trace

from citeguard.domain.chunks import (
    CHUNK_STALL_MINUTES,
    ChunkCounters,
    ReplacementItem,
    aggregate_job,
    plan_chunks,
    is_stalled,
    progress_percentage,
    stall_cutoff,
)
from citeguard.domain.compliance import citation_urls
from citeguard.domain.errors import NotFoundError
from citeguard.domain.revisions import ROLLBACK_WINDOW_HOURS, new_revision_window
from citeguard.services.discovery import CitationDiscoveryService
from citeguard.services.repository import RepositoryUnavailableError, RepositoryValidationError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ItemOutcome = Literal["auto_applied", "manual_review"]


@dataclass(slots=True)
class PollSummary:
    jobs_checked: int = 0
    chunks_processed: int = 0
    chunks_rescued: int = 0
    jobs_finalized: int = 0
    jobs_failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class ChunkResult:
    chunk_id: str
    job_id: str
    status: Literal["completed", "failed"]
    counters: ChunkCounters = field(default_factory=ChunkCounters)
    error_message: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "job_id": self.job_id,
            "status": self.status,
            "progress_current": self.counters.progress_current,
            "auto_applied_count": self.counters.auto_applied_count,
            "manual_review_count": self.counters.manual_review_count,
            "failed_count": self.counters.failed_count,
            "partial_failure": self.counters.partial_failure,
            "failures": list(self.counters.failures),
            "error_message": self.error_message,
        }


class ReplacementJobService:
    def __init__(
        self,
        repository: Any,
        *,
        discovery: CitationDiscoveryService,
        chunk_size: int = 5,
        stall_minutes: int = CHUNK_STALL_MINUTES,
        heartbeat_every: int = 5,
        auto_apply_confidence: float = 8.0,
        rollback_window_hours: int = ROLLBACK_WINDOW_HOURS,
        max_results: int = 5,
    ) -> None:
        self.repository = repository
        self.discovery = discovery
        self.chunk_size = chunk_size
        self.stall_minutes = stall_minutes
        self.heartbeat_every = max(1, heartbeat_every)
        self.auto_apply_confidence = auto_apply_confidence
        self.rollback_window_hours = rollback_window_hours
        self.max_results = max_results

    async def enqueue(
        self,
        *,
        items: Sequence[ReplacementItem] = (),
        cited_urls: Sequence[str] = (),
        created_by: str | None = None,
        chunk_size: int | None = None,
    ) -> dict[str, Any]:
        work = list(items)
        if cited_urls:
            citing = await self.repository.find_articles_citing(list(cited_urls))
            work.extend(
                ReplacementItem(article_id=row["article_id"], citation_url=row["citation_url"]) for row in citing
            )

        plans = plan_chunks(work, chunk_size=chunk_size or self.chunk_size)
        if not plans:
            raise RepositoryValidationError("no articles cite the requested urls")

        job = await self.repository.create_replacement_job(plans=plans, created_by=created_by)
        logger.info(
            "replacement job enqueued job_id=%s chunks=%s items=%s created_by=%s",
            job["id"],
            len(plans),
            job.get("progress_total"),
            created_by,
        )
        return job

    async def poll_and_advance(self, *, now: datetime | None = None) -> PollSummary:
        """One scheduler tick: rescue stalled chunks, run one chunk per job, finalize finished jobs."""
        summary = PollSummary()
        jobs = await self.repository.list_active_replacement_jobs()
        for job in jobs:
            job_id = job["id"]
            summary.jobs_checked += 1
            with tracer.start_as_current_span("replacement_jobs.advance") as span:
                span.set_attribute("job.id", job_id)
                try:
                    rescued = await self.repository.reset_stalled_chunks(
                        job_id=job_id,
                        stalled_before=stall_cutoff(now, stall_minutes=self.stall_minutes),
                    )
                    if rescued:
                        logger.warning("reset stalled chunks job_id=%s count=%s", job_id, len(rescued))
                        summary.chunks_rescued += len(rescued)

                    chunk = await self.repository.claim_next_pending_chunk(job_id)
                    if chunk is not None:
                        await self.process_chunk(chunk)
                        summary.chunks_processed += 1
                        continue

                    aggregate = aggregate_job(await self.repository.list_replacement_chunks(job_id))
                    if aggregate.all_terminal:
                        await self.repository.update_job_aggregate(job_id, aggregate)
                        await self.repository.finalize_job(job_id, status="completed")
                        summary.jobs_finalized += 1
                        logger.info(
                            "replacement job completed job_id=%s completed_chunks=%s failed_chunks=%s",
                            job_id,
                            aggregate.completed_chunks,
                            aggregate.failed_chunks,
                        )
                except RepositoryUnavailableError:
                    raise
                except Exception as exc:
                    logger.exception("replacement job advance failed job_id=%s", job_id)
                    await self.repository.finalize_job(job_id, status="failed", error_message=str(exc))
                    summary.jobs_failed += 1
        return summary

    async def process_chunk(self, chunk: dict[str, Any]) -> ChunkResult:
        chunk_id = chunk["id"]
        job_id = chunk["parent_job_id"]
        counters = ChunkCounters()

        with tracer.start_as_current_span("replacement_jobs.process_chunk") as span:
            span.set_attribute("chunk.id", chunk_id)
            span.set_attribute("chunk.number", int(chunk.get("chunk_number") or 0))
            try:
                items = _coerce_items(chunk.get("items"))
                articles = await self._load_articles({item.article_id for item in items})

                for index, item in enumerate(items, start=1):
                    try:
                        outcome = await self._process_item(item, articles=articles, job_id=job_id)
                    except Exception as exc:
                        logger.warning(
                            "replacement item failed chunk_id=%s article_id=%s url=%s error=%s",
                            chunk_id,
                            item.article_id,
                            item.citation_url,
                            exc,
                        )
                        counters.record_failure(
                            article_id=item.article_id,
                            citation_url=item.citation_url,
                            error=str(exc) or exc.__class__.__name__,
                        )
                    else:
                        if outcome == "auto_applied":
                            counters.auto_applied_count += 1
                        else:
                            counters.manual_review_count += 1
                    counters.progress_current = index
                    if index % self.heartbeat_every == 0:
                        await self.repository.update_chunk_progress(chunk_id, counters)

                await self.repository.complete_chunk(chunk_id, counters)
                result = ChunkResult(chunk_id=chunk_id, job_id=job_id, status="completed", counters=counters)
            except Exception as exc:
                logger.exception("replacement chunk failed chunk_id=%s job_id=%s", chunk_id, job_id)
                await self.repository.fail_chunk(chunk_id, error_message=str(exc) or exc.__class__.__name__)
                result = ChunkResult(
                    chunk_id=chunk_id,
                    job_id=job_id,
                    status="failed",
                    counters=counters,
                    error_message=str(exc),
                )

        await self._refresh_job(job_id)
        logger.info(
            "replacement chunk finished chunk_id=%s status=%s auto_applied=%s manual_review=%s failed=%s",
            chunk_id,
            result.status,
            counters.auto_applied_count,
            counters.manual_review_count,
            counters.failed_count,
        )
        return result

    async def restart_chunk(self, chunk_id: str) -> dict[str, Any]:
        chunk = await self.repository.restart_chunk(chunk_id)
        logger.info("replacement chunk restarted chunk_id=%s job_id=%s", chunk_id, chunk["parent_job_id"])
        summary = await self.poll_and_advance()
        return {"job_id": chunk["parent_job_id"], "restarted_chunks": 1, "poll": summary.as_dict()}

    async def restart_job(self, job_id: str) -> dict[str, Any]:
        restarted = await self.repository.restart_failed_chunks(job_id)
        logger.info("replacement job restarted job_id=%s chunks=%s", job_id, restarted)
        summary = await self.poll_and_advance()
        return {"job_id": job_id, "restarted_chunks": restarted, "poll": summary.as_dict()}

    async def status(self, job_id: str, *, now: datetime | None = None) -> dict[str, Any]:
        job = await self.repository.get_replacement_job(job_id)
        if not job:
            raise NotFoundError("replacement job not found")
        chunks = [
            {**chunk, "stalled": is_stalled(chunk, now=now, stall_minutes=self.stall_minutes)}
            for chunk in await self.repository.list_replacement_chunks(job_id)
        ]
        return {
            **job,
            "percentage": progress_percentage(job.get("progress_current"), job.get("progress_total")),
            "chunks": chunks,
        }

    async def _process_item(
        self,
        item: ReplacementItem,
        *,
        articles: dict[str, dict[str, Any] | None],
        job_id: str,
    ) -> ItemOutcome:
        article = articles.get(item.article_id)
        if article is None:
            raise NotFoundError(f"article not found: {item.article_id}")

        # Already replaced by an earlier run of this chunk.
        if item.citation_url not in citation_urls(article.get("external_citations")):
            return "auto_applied"

        discovered = await self.discovery.discover(
            article=article,
            citation_url=item.citation_url,
            max_results=self.max_results,
        )
        best = discovered.best
        if best is None:
            raise NotFoundError("no alternative sources found")

        confidence = best.confidence
        reason = best.suggestion.reason or "Replacement for unreachable citation"
        if confidence >= self.auto_apply_confidence:
            await self.repository.apply_citation_replacement(
                article_id=item.article_id,
                original_url=item.citation_url,
                replacement_url=best.suggestion.suggested_url,
                replacement_source=best.suggestion.source_name,
                replacement_reason=reason,
                confidence_score=confidence,
                job_id=job_id,
                rollback_expires_at=new_revision_window(hours=self.rollback_window_hours),
                replacement_domain=best.score.domain,
            )
            articles[item.article_id] = await self.repository.get_article(item.article_id)
            return "auto_applied"

        await self.repository.record_replacement_suggestion(
            article_id=item.article_id,
            original_url=item.citation_url,
            replacement_url=best.suggestion.suggested_url,
            replacement_source=best.suggestion.source_name,
            replacement_reason=reason,
            confidence_score=confidence,
            job_id=job_id,
        )
        return "manual_review"

    async def _load_articles(self, article_ids: set[str]) -> dict[str, dict[str, Any] | None]:
        return {article_id: await self.repository.get_article(article_id) for article_id in sorted(article_ids)}

    async def _refresh_job(self, job_id: str) -> None:
        chunks = await self.repository.list_replacement_chunks(job_id)
        await self.repository.update_job_aggregate(job_id, aggregate_job(chunks))


def _coerce_items(raw_items: Any) -> list[ReplacementItem]:
    if not isinstance(raw_items, list):
        raise ValueError("chunk items must be a list")
    items: list[ReplacementItem] = []
    for raw in raw_items:
        if not isinstance(raw, dict) or not raw.get("article_id") or not raw.get("citation_url"):
            raise ValueError("chunk item requires article_id and citation_url")
        items.append(ReplacementItem(article_id=str(raw["article_id"]), citation_url=str(raw["citation_url"])))
    return items
