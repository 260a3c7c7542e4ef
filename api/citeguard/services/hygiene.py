from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
import logging
import time
from typing import Any

import httpx
from opentelemetry import trace

from citeguard.core.urls import extract_domain
from citeguard.domain.compliance import (
    DEFAULT_WEIGHTS,
    MAX_REPORTED_VIOLATIONS,
    STALE_ALERT_NOTE,
    ArticleScanResult,
    Violation,
    article_status,
    build_recommendations,
    citation_urls,
    classify_citation,
    compute_compliance_score,
    count_violations,
    find_stale_alert_ids,
    plan_alert_changes,
    top_offenders,
    violations_by_domain,
)
from citeguard.domain.chunks import MAX_FAILURE_SAMPLES
from citeguard.services.reachability import check_urls_reachable
from citeguard.services.repository import RepositoryError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class HygieneService:
    def __init__(
        self,
        repository: Any,
        *,
        banned_domains: set[str] | None = None,
        weights: Mapping[str, float] | None = None,
        alert_threshold: int = 10,
        scan_interval_hours: int = 24,
        reachability_timeout_seconds: float = 5.0,
        check_reachability: bool = True,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.repository = repository
        self.banned_domains = set(banned_domains or ())
        self.weights = dict(weights or DEFAULT_WEIGHTS)
        self.alert_threshold = alert_threshold
        self.scan_interval_hours = scan_interval_hours
        self.reachability_timeout_seconds = reachability_timeout_seconds
        self.check_reachability = check_reachability
        self.http_client = http_client

    async def scan(self, *, now: datetime | None = None) -> dict[str, Any]:
        """Scan every published article, persist the report and reconcile alerts."""
        started = time.perf_counter()
        scan_date = now or datetime.now(timezone.utc)

        with tracer.start_as_current_span("hygiene.scan") as span:
            banned = self.banned_domains | await self.repository.list_banned_domains()
            articles = await self.repository.list_published_articles()
            span.set_attribute("hygiene.articles", len(articles))

            domain_usage = await self.repository.list_domain_usage(
                sorted({extract_domain(url) for article in articles for url in _article_urls(article)} - {""})
            )

            results: list[ArticleScanResult] = []
            failures: list[dict[str, str]] = []
            for article in articles:
                try:
                    result = await self._scan_article(article, banned=banned, domain_usage=domain_usage)
                except Exception as exc:
                    logger.warning("hygiene scan article failed article_id=%s error=%s", article.get("id"), exc)
                    result = ArticleScanResult(
                        article_id=str(article.get("id")),
                        status=article_status([], error=str(exc)),
                        citations_scanned=0,
                        error=str(exc) or exc.__class__.__name__,
                    )
                    if len(failures) < MAX_FAILURE_SAMPLES:
                        failures.append({"article_id": result.article_id, "error": result.error or ""})
                results.append(result)

            violations = [violation for result in results for violation in result.violations]
            counts = count_violations(violations)
            total_citations = sum(result.citations_scanned for result in results)
            compliance_score = compute_compliance_score(counts, total_citations, weights=self.weights)
            articles_failed = sum(1 for result in results if result.error is not None)

            alert_summary = await self._reconcile_alerts(articles=articles, violations=violations)

            report = {
                "scan_date": scan_date,
                "total_articles_scanned": len(results),
                "total_citations_scanned": total_citations,
                "banned_citations_found": counts.get("banned_domain", 0),
                "broken_citations_found": counts.get("broken_link", 0),
                "missing_inline_found": counts.get("missing_inline", 0),
                "overused_domains_found": counts.get("overused_domain", 0),
                "articles_with_violations": sum(1 for result in results if result.violations),
                "articles_failed": articles_failed,
                "compliance_score": compliance_score,
                "violations_by_domain": violations_by_domain(violations),
                "top_offenders": top_offenders(results),
                "article_results": [result.as_dict() for result in results],
                "scan_duration_ms": int((time.perf_counter() - started) * 1000),
                "next_scan_scheduled": scan_date + timedelta(hours=self.scan_interval_hours),
            }
            stored = await self.repository.insert_hygiene_report(report)

        banned_count = counts.get("banned_domain", 0)
        should_alert = banned_count > self.alert_threshold
        if should_alert:
            logger.warning(
                "hygiene scan found banned citations above threshold count=%s threshold=%s",
                banned_count,
                self.alert_threshold,
            )
        logger.info(
            "hygiene scan finished articles=%s citations=%s compliance_score=%s failed=%s duration_ms=%s",
            len(results),
            total_citations,
            compliance_score,
            articles_failed,
            report["scan_duration_ms"],
        )
        return {
            "report": stored,
            "violations": [violation.as_dict() for violation in violations[:MAX_REPORTED_VIOLATIONS]],
            "recommendations": build_recommendations(counts, compliance_score=compliance_score),
            "should_alert": should_alert,
            "alerts": alert_summary,
            "failed_count": articles_failed,
            "partial_failure": articles_failed > 0,
            "failures": failures,
        }

    async def cleanup_stale_alerts(self) -> dict[str, int]:
        open_alerts = await self.repository.list_open_alerts()
        if not open_alerts:
            return {"checked": 0, "resolved": 0}

        current = await self.repository.list_article_citation_urls(
            sorted({str(alert["article_id"]) for alert in open_alerts})
        )
        stale_ids = find_stale_alert_ids(open_alerts=open_alerts, current_citations=current)
        resolved = await self.repository.resolve_alerts(stale_ids, note=STALE_ALERT_NOTE)
        logger.info("stale alert cleanup checked=%s resolved=%s", len(open_alerts), resolved)
        return {"checked": len(open_alerts), "resolved": resolved}

    async def latest_report(self) -> dict[str, Any] | None:
        return await self.repository.get_latest_hygiene_report()

    async def _scan_article(
        self,
        article: dict[str, Any],
        *,
        banned: set[str],
        domain_usage: Mapping[str, int],
    ) -> ArticleScanResult:
        article_id = str(article["id"])
        urls = _article_urls(article)
        reachability: dict[str, Any] = {}
        if self.check_reachability and urls:
            reachability = await check_urls_reachable(
                urls,
                client=self.http_client,
                timeout_seconds=self.reachability_timeout_seconds,
            )

        violations: list[Violation] = []
        for url in urls:
            check = reachability.get(url)
            violations.extend(
                classify_citation(
                    article_id=article_id,
                    citation_url=url,
                    content=article.get("detailed_content"),
                    banned_domains=banned,
                    reachable=check.reachable if check is not None else None,
                    domain_use_count=domain_usage.get(extract_domain(url), 0),
                    article_title=article.get("headline"),
                )
            )
        return ArticleScanResult(
            article_id=article_id,
            status=article_status(violations),
            citations_scanned=len(urls),
            violations=violations,
        )

    async def _reconcile_alerts(
        self,
        *,
        articles: list[dict[str, Any]],
        violations: list[Violation],
    ) -> dict[str, int]:
        try:
            open_alerts = await self.repository.list_open_alerts()
            current = {str(article["id"]): _article_urls(article) for article in articles}
            missing = sorted({str(alert["article_id"]) for alert in open_alerts} - set(current))
            if missing:
                current.update(await self.repository.list_article_citation_urls(missing))

            plan = plan_alert_changes(open_alerts=open_alerts, detected=violations, current_citations=current)
            created = await self.repository.create_alerts(plan.to_create)
            resolved = await self.repository.resolve_alerts(plan.to_resolve, note=STALE_ALERT_NOTE)
        except RepositoryError as exc:
            logger.warning("alert reconciliation failed error=%s", exc)
            return {"created": 0, "resolved": 0, "kept_open": 0}
        return {"created": created, "resolved": resolved, "kept_open": plan.kept_open}


def _article_urls(article: dict[str, Any]) -> list[str]:
    return list(dict.fromkeys(citation_urls(article.get("external_citations"))))
