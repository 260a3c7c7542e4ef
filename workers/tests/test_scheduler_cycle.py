from __future__ import annotations

import asyncio
from typing import Any

from citeguard_worker.core.config import Settings
from citeguard_worker.main import SchedulerState, run_cycle


class FakeCiteGuardClient:
    def __init__(self, *, poll: dict[str, Any] | None = None, violations: list[dict[str, Any]] | None = None) -> None:
        self.poll = poll or {"jobs_checked": 0, "chunks_processed": 0, "chunks_rescued": 0, "jobs_finalized": 0}
        self.violations = violations or []
        self.calls: list[str] = []
        self.created_jobs: list[list[dict[str, str]]] = []
        self.job_statuses: dict[str, str] = {}

    async def poll_replacement_jobs(self) -> dict[str, Any]:
        self.calls.append("poll")
        return self.poll

    async def cleanup_stale_alerts(self) -> dict[str, Any]:
        self.calls.append("cleanup")
        return {"checked": 2, "resolved": 1}

    async def run_compliance_scan(self) -> dict[str, Any]:
        self.calls.append("scan")
        return {
            "report": {"compliance_score": 91.5, "total_articles_scanned": 12},
            "violations": self.violations,
            "should_alert": False,
        }

    async def create_replacement_job(self, items: list[dict[str, str]]) -> dict[str, Any]:
        self.calls.append("enqueue")
        self.created_jobs.append(items)
        job_id = f"job-{41 + len(self.created_jobs)}"
        self.job_statuses[job_id] = "pending"
        return {"id": job_id, "status": "pending"}

    async def get_replacement_job(self, job_id: str) -> dict[str, Any]:
        self.calls.append("status")
        return {"id": job_id, "status": self.job_statuses[job_id]}


def _settings(**overrides: Any) -> Settings:
    values = {
        "alert_cleanup_interval_seconds": 60.0,
        "compliance_scan_interval_seconds": 600.0,
        "otel_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


def test_first_cycle_runs_every_task() -> None:
    client = FakeCiteGuardClient()
    state = SchedulerState()

    result = asyncio.run(run_cycle(client, _settings(), state, now=1000.0))

    assert client.calls == ["poll", "cleanup", "scan"]
    assert result.cleanup == {"checked": 2, "resolved": 1}
    assert result.scan is not None
    assert result.enqueued_job_id is None
    assert state.last_cleanup_at == 1000.0
    assert state.last_scan_at == 1000.0


def test_cleanup_and_scan_wait_for_their_intervals() -> None:
    client = FakeCiteGuardClient()
    state = SchedulerState(last_cleanup_at=1000.0, last_scan_at=1000.0)
    settings = _settings()

    asyncio.run(run_cycle(client, settings, state, now=1030.0))
    assert client.calls == ["poll"]

    asyncio.run(run_cycle(client, settings, state, now=1060.0))
    assert client.calls == ["poll", "poll", "cleanup"]

    asyncio.run(run_cycle(client, settings, state, now=1600.0))
    assert client.calls[-2:] == ["cleanup", "scan"]


def test_scan_enqueues_broken_link_replacements() -> None:
    client = FakeCiteGuardClient(
        violations=[
            {"article_id": "a1", "citation_url": "https://dead.example/1", "violation_type": "broken_link"},
            {"article_id": "a1", "citation_url": "https://spam.example/2", "violation_type": "banned_domain"},
            {"article_id": "a2", "citation_url": "https://dead.example/3", "violation_type": "broken_link"},
        ]
    )
    state = SchedulerState(last_cleanup_at=0.0)

    result = asyncio.run(run_cycle(client, _settings(), state, now=10.0))

    assert result.enqueued_job_id == "job-42"
    assert client.created_jobs == [
        [
            {"article_id": "a1", "citation_url": "https://dead.example/1"},
            {"article_id": "a2", "citation_url": "https://dead.example/3"},
        ]
    ]


def test_broken_link_enqueue_can_be_disabled() -> None:
    client = FakeCiteGuardClient(
        violations=[{"article_id": "a1", "citation_url": "https://dead.example/1", "violation_type": "broken_link"}]
    )

    result = asyncio.run(
        run_cycle(client, _settings(enqueue_broken_link_replacements=False), SchedulerState(), now=10.0)
    )

    assert result.enqueued_job_id is None
    assert "enqueue" not in client.calls


def test_did_work_reflects_poll_progress() -> None:
    def settled() -> SchedulerState:
        return SchedulerState(last_cleanup_at=0.0, last_scan_at=0.0)

    idle = asyncio.run(run_cycle(FakeCiteGuardClient(), _settings(), settled(), now=1.0))
    busy_client = FakeCiteGuardClient(poll={"chunks_processed": 1, "chunks_rescued": 0})
    busy = asyncio.run(run_cycle(busy_client, _settings(), settled(), now=1.0))

    assert not idle.did_work
    assert busy.did_work


def test_rescan_skips_links_covered_by_an_active_job() -> None:
    dead_1 = {"article_id": "a1", "citation_url": "https://dead.example/1", "violation_type": "broken_link"}
    dead_2 = {"article_id": "a2", "citation_url": "https://dead.example/2", "violation_type": "broken_link"}
    client = FakeCiteGuardClient(violations=[dead_1])
    state = SchedulerState(last_cleanup_at=0.0)
    settings = _settings(compliance_scan_interval_seconds=1.0)

    first = asyncio.run(run_cycle(client, settings, state, now=10.0))
    client.job_statuses["job-42"] = "running"
    client.violations = [dead_1, dead_2]
    second = asyncio.run(run_cycle(client, settings, state, now=20.0))

    assert first.enqueued_job_id == "job-42"
    assert second.enqueued_job_id == "job-43"
    assert client.created_jobs[1] == [{"article_id": "a2", "citation_url": "https://dead.example/2"}]

    client.job_statuses["job-43"] = "running"
    third = asyncio.run(run_cycle(client, settings, state, now=30.0))
    assert third.enqueued_job_id is None
    assert len(client.created_jobs) == 2

    client.job_statuses["job-42"] = "completed"
    client.job_statuses["job-43"] = "failed"
    fourth = asyncio.run(run_cycle(client, settings, state, now=40.0))
    assert fourth.enqueued_job_id == "job-44"
    assert client.created_jobs[2] == [
        {"article_id": "a1", "citation_url": "https://dead.example/1"},
        {"article_id": "a2", "citation_url": "https://dead.example/2"},
    ]
    assert list(state.enqueued_items) == ["job-44"]
