from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import random
import time
from typing import Any

from opentelemetry import trace

from citeguard_worker.core.config import Settings, get_settings
from citeguard_worker.core.telemetry import (
    configure_worker_logging,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
)
from citeguard_worker.services.api_client import CiteGuardClient

ACTIVE_JOB_STATUSES = frozenset({"pending", "running"})

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class SchedulerState:
    last_cleanup_at: float | None = None
    last_scan_at: float | None = None
    # Items of replacement jobs this scheduler enqueued, keyed by job id.
    enqueued_items: dict[str, set[tuple[str, str]]] = field(default_factory=dict)


@dataclass(slots=True)
class CycleResult:
    poll: dict[str, Any]
    cleanup: dict[str, Any] | None = None
    scan: dict[str, Any] | None = None
    enqueued_job_id: str | None = None

    @property
    def did_work(self) -> bool:
        return bool(self.poll.get("chunks_processed") or self.poll.get("chunks_rescued"))


async def run_cycle(
    client: CiteGuardClient,
    settings: Settings,
    state: SchedulerState,
    *,
    now: float,
) -> CycleResult:
    """One scheduler tick; poll always runs, cleanup and scan only when their interval elapsed."""
    result = CycleResult(poll=await client.poll_replacement_jobs())
    if result.did_work:
        logger.info(
            "replacement poll processed=%s rescued=%s finalized=%s",
            result.poll.get("chunks_processed"),
            result.poll.get("chunks_rescued"),
            result.poll.get("jobs_finalized"),
        )

    if _due(state.last_cleanup_at, now=now, interval=settings.alert_cleanup_interval_seconds):
        result.cleanup = await client.cleanup_stale_alerts()
        state.last_cleanup_at = now
        if result.cleanup.get("resolved"):
            logger.info("resolved stale compliance alerts: %s", result.cleanup["resolved"])

    if _due(state.last_scan_at, now=now, interval=settings.compliance_scan_interval_seconds):
        with tracer.start_as_current_span("scheduler.compliance_scan"):
            result.scan = await client.run_compliance_scan()
        state.last_scan_at = now
        report = result.scan.get("report") or {}
        logger.info(
            "compliance scan score=%s articles=%s should_alert=%s",
            report.get("compliance_score"),
            report.get("total_articles_scanned"),
            result.scan.get("should_alert"),
        )
        if settings.enqueue_broken_link_replacements:
            result.enqueued_job_id = await _enqueue_broken_links(client, result.scan, state)

    return result


async def run_worker() -> None:
    settings = get_settings()
    configure_worker_logging(settings)
    telemetry_runtime = setup_worker_telemetry(settings)
    client = CiteGuardClient(
        base_url=settings.api_base_url,
        module_id=settings.module_id,
        api_key=settings.api_key,
        timeout_seconds=settings.request_timeout_seconds,
    )
    state = SchedulerState()
    if not settings.compliance_scan_on_start:
        state.last_scan_at = time.monotonic()

    backoff = settings.poll_interval_seconds
    try:
        while True:
            try:
                with tracer.start_as_current_span("scheduler.cycle"):
                    result = await run_cycle(client, settings, state, now=time.monotonic())
                backoff = settings.poll_interval_seconds
                if not result.did_work:
                    await asyncio.sleep(settings.poll_interval_seconds)
            except Exception as exc:  # pragma: no cover - scheduler robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("scheduler cycle failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        shutdown_worker_telemetry(telemetry_runtime)


async def _enqueue_broken_links(
    client: CiteGuardClient,
    scan: dict[str, Any],
    state: SchedulerState,
) -> str | None:
    """Queue replacements for broken links not already covered by a job that is still running."""
    covered = await _items_in_active_jobs(client, state)
    items: list[dict[str, str]] = []
    keys: set[tuple[str, str]] = set()
    for violation in scan.get("violations") or []:
        if violation.get("violation_type") != "broken_link":
            continue
        key = (str(violation["article_id"]), str(violation["citation_url"]))
        if key in covered or key in keys:
            continue
        keys.add(key)
        items.append({"article_id": key[0], "citation_url": key[1]})
    if not items:
        if covered:
            logger.info("broken links already queued in active jobs=%s", sorted(state.enqueued_items))
        return None
    job = await client.create_replacement_job(items)
    job_id = job.get("id")
    if job_id:
        state.enqueued_items[str(job_id)] = keys
    logger.info("enqueued broken link replacement job id=%s items=%s", job_id, len(items))
    return job_id


async def _items_in_active_jobs(client: CiteGuardClient, state: SchedulerState) -> set[tuple[str, str]]:
    covered: set[tuple[str, str]] = set()
    for job_id in list(state.enqueued_items):
        job = await client.get_replacement_job(job_id)
        if job.get("status") in ACTIVE_JOB_STATUSES:
            covered |= state.enqueued_items[job_id]
        else:
            del state.enqueued_items[job_id]
    return covered


def _due(last_run_at: float | None, *, now: float, interval: float) -> bool:
    return last_run_at is None or now - last_run_at >= interval


if __name__ == "__main__":
    asyncio.run(run_worker())
