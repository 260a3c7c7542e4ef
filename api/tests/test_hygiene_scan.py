from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import httpx

from citeguard.domain.compliance import STALE_ALERT_NOTE, Violation
from citeguard.services.hygiene import HygieneService

SCAN_TIME = datetime(2026, 5, 4, 2, 0, tzinfo=timezone.utc)


class FakeHygieneRepository:
    def __init__(self, articles: list[dict[str, Any]], open_alerts: list[dict[str, Any]] | None = None) -> None:
        self.articles = articles
        self.open_alerts = list(open_alerts or [])
        self.created_alerts: list[Violation] = []
        self.resolved: list[tuple[str, str]] = []
        self.reports: list[dict[str, Any]] = []
        self.usage: dict[str, int] = {"popular.example": 75}

    async def list_banned_domains(self) -> set[str]:
        return {"spam.example"}

    async def list_published_articles(self) -> list[dict[str, Any]]:
        return self.articles

    async def list_domain_usage(self, domains: list[str]) -> dict[str, int]:
        return {domain: self.usage[domain] for domain in domains if domain in self.usage}

    async def list_open_alerts(self) -> list[dict[str, Any]]:
        return list(self.open_alerts)

    async def list_article_citation_urls(self, article_ids: list[str]) -> dict[str, list[str]]:
        return {
            str(article["id"]): [citation["url"] for citation in article["external_citations"]]
            for article in self.articles
            if str(article["id"]) in article_ids
        }

    async def create_alerts(self, violations: list[Violation]) -> int:
        self.created_alerts.extend(violations)
        return len(violations)

    async def resolve_alerts(self, alert_ids: list[str], *, note: str) -> int:
        self.resolved.extend((alert_id, note) for alert_id in alert_ids)
        return len(alert_ids)

    async def insert_hygiene_report(self, report: dict[str, Any]) -> dict[str, Any]:
        stored = {**report, "id": f"report-{len(self.reports) + 1}", "created_at": SCAN_TIME}
        self.reports.append(stored)
        return stored

    async def get_latest_hygiene_report(self) -> dict[str, Any] | None:
        return self.reports[-1] if self.reports else None


def _article(article_id: str, urls: list[str], *, inline: bool = True) -> dict[str, Any]:
    content = " ".join(f'<a href="{url}">ref</a>' for url in urls) if inline else "<p>body</p>"
    return {
        "id": article_id,
        "headline": f"Article {article_id}",
        "detailed_content": content,
        "external_citations": [{"url": url} for url in urls],
    }


def test_scan_classifies_citations_and_persists_report() -> None:
    articles = [
        _article("a1", ["https://ine.es/ok", "https://cdn.spam.example/x"]),
        _article("a2", ["https://dead.example/404"], inline=False),
        _article("a3", ["https://popular.example/guide"]),
    ]
    repository = FakeHygieneRepository(articles)

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "dead.example":
            return httpx.Response(status_code=404, request=request)
        return httpx.Response(status_code=200, request=request)

    async def run() -> dict[str, Any]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            service = HygieneService(repository, http_client=client)
            return await service.scan(now=SCAN_TIME)

    result = asyncio.run(run())
    report = result["report"]

    assert report["total_articles_scanned"] == 3
    assert report["total_citations_scanned"] == 4
    assert report["banned_citations_found"] == 1
    assert report["broken_citations_found"] == 1
    assert report["missing_inline_found"] == 1
    assert report["overused_domains_found"] == 1
    # banned 10*10*1/4 + broken 5*10*1/4 + missing 2*10*1/4
    assert report["compliance_score"] == 57.5
    assert report["next_scan_scheduled"] > SCAN_TIME
    statuses = {row["article_id"]: row["status"] for row in report["article_results"]}
    assert statuses == {"a1": "fail", "a2": "warning", "a3": "warning"}
    assert result["should_alert"] is False
    assert result["partial_failure"] is False
    assert {(alert.article_id, alert.citation_url) for alert in repository.created_alerts} == {
        ("a1", "https://cdn.spam.example/x"),
        ("a2", "https://dead.example/404"),
        ("a3", "https://popular.example/guide"),
    }
    assert any("banned" in item for item in result["recommendations"])


def test_scan_continues_after_article_failure() -> None:
    repository = FakeHygieneRepository(
        [_article("bad", ["https://boom.example/x"]), _article("good", ["https://ine.es/ok"])]
    )

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "boom.example":
            raise RuntimeError("resolver crashed")
        return httpx.Response(status_code=200, request=request)

    async def run() -> dict[str, Any]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HygieneService(repository, http_client=client).scan(now=SCAN_TIME)

    result = asyncio.run(run())

    assert result["failed_count"] == 1
    assert result["partial_failure"] is True
    assert result["failures"][0]["article_id"] == "bad"
    statuses = {row["article_id"]: row["status"] for row in result["report"]["article_results"]}
    assert statuses == {"bad": "fail", "good": "pass"}
    assert result["report"]["compliance_score"] == 100.0


def test_scan_is_idempotent_for_existing_alerts_and_resolves_stale_ones() -> None:
    repository = FakeHygieneRepository(
        [_article("a1", ["https://cdn.spam.example/x"])],
        open_alerts=[
            {"id": "alert-1", "article_id": "a1", "citation_url": "https://cdn.spam.example/x"},
            {"id": "alert-2", "article_id": "a1", "citation_url": "https://replaced.example/old"},
        ],
    )
    service = HygieneService(repository, check_reachability=False)

    result = asyncio.run(service.scan(now=SCAN_TIME))

    assert repository.created_alerts == []
    assert repository.resolved == [("alert-2", STALE_ALERT_NOTE)]
    assert result["alerts"] == {"created": 0, "resolved": 1, "kept_open": 1}


def test_should_alert_when_banned_count_exceeds_threshold() -> None:
    urls = [f"https://spam.example/{index}" for index in range(3)]
    repository = FakeHygieneRepository([_article("a1", urls)])
    service = HygieneService(repository, check_reachability=False, alert_threshold=2)

    result = asyncio.run(service.scan(now=SCAN_TIME))

    assert result["should_alert"] is True
    assert result["report"]["compliance_score"] == 0.0


def test_cleanup_stale_alerts_resolves_only_missing_urls() -> None:
    repository = FakeHygieneRepository(
        [_article("a1", ["https://ine.es/ok"])],
        open_alerts=[
            {"id": "keep", "article_id": "a1", "citation_url": "https://ine.es/ok"},
            {"id": "gone", "article_id": "a1", "citation_url": "https://old.example/x"},
            {"id": "orphan", "article_id": "deleted", "citation_url": "https://ine.es/ok"},
        ],
    )
    service = HygieneService(repository)

    result = asyncio.run(service.cleanup_stale_alerts())

    assert result == {"checked": 3, "resolved": 2}
    assert [alert_id for alert_id, _ in repository.resolved] == ["gone", "orphan"]


def test_malformed_citation_url_is_reported_as_broken_without_failing_article() -> None:
    malformed = "http://example.com:abc/p"
    repository = FakeHygieneRepository(
        [_article("a1", ["https://good.example/", "https://spam.example/x", malformed])]
    )

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, request=request)

    async def run() -> dict[str, Any]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HygieneService(repository, http_client=client).scan(now=SCAN_TIME)

    result = asyncio.run(run())
    report = result["report"]

    assert report["articles_failed"] == 0
    assert report["total_citations_scanned"] == 3
    assert report["banned_citations_found"] == 1
    assert report["broken_citations_found"] == 1
    assert result["partial_failure"] is False
    assert ("a1", malformed) in {(alert.article_id, alert.citation_url) for alert in repository.created_alerts}
