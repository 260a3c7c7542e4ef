from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from citeguard.core.urls import domain_matches, extract_domain
from citeguard.domain.scoring import CRITICAL_OVERUSE_THRESHOLD, OVERUSE_THRESHOLD

ViolationType = Literal["banned_domain", "broken_link", "missing_inline", "overused_domain"]
Severity = Literal["info", "warning", "critical"]
ArticleStatus = Literal["pass", "warning", "fail"]

SCORED_VIOLATION_TYPES: tuple[str, ...] = ("banned_domain", "broken_link", "missing_inline")
DEFAULT_WEIGHTS: dict[str, float] = {
    "banned_domain": 10.0,
    "broken_link": 5.0,
    "missing_inline": 2.0,
}
MAX_REPORTED_VIOLATIONS = 50
STALE_ALERT_NOTE = "Auto-resolved: citation no longer exists in article (likely replaced or removed)"


@dataclass(slots=True, frozen=True)
class Violation:
    article_id: str
    citation_url: str
    violation_type: ViolationType
    severity: Severity
    domain: str
    article_title: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "article_id": self.article_id,
            "citation_url": self.citation_url,
            "violation_type": self.violation_type,
            "severity": self.severity,
            "domain": self.domain,
            "article_title": self.article_title,
        }


@dataclass(slots=True)
class ArticleScanResult:
    article_id: str
    status: ArticleStatus
    citations_scanned: int
    violations: list[Violation] = field(default_factory=list)
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "article_id": self.article_id,
            "status": self.status,
            "citations_scanned": self.citations_scanned,
            "violation_count": len(self.violations),
            "error": self.error,
        }


@dataclass(slots=True, frozen=True)
class AlertPlan:
    to_create: list[Violation]
    to_resolve: list[str]
    kept_open: int


def citation_urls(citations: Any) -> list[str]:
    if not isinstance(citations, list):
        return []
    urls: list[str] = []
    for citation in citations:
        if isinstance(citation, dict) and isinstance(citation.get("url"), str) and citation["url"].strip():
            urls.append(citation["url"].strip())
    return urls


def classify_citation(
    *,
    article_id: str,
    citation_url: str,
    content: str | None,
    banned_domains: set[str],
    reachable: bool | None,
    domain_use_count: int,
    article_title: str | None = None,
) -> list[Violation]:
    domain = extract_domain(citation_url)
    violations: list[Violation] = []

    def add(violation_type: ViolationType, severity: Severity) -> None:
        violations.append(
            Violation(
                article_id=article_id,
                citation_url=citation_url,
                violation_type=violation_type,
                severity=severity,
                domain=domain,
                article_title=article_title,
            )
        )

    if domain_matches(domain, banned_domains):
        add("banned_domain", "critical")
    if reachable is False:
        add("broken_link", "warning")
    if not content or citation_url not in content:
        add("missing_inline", "info")
    if domain_use_count > CRITICAL_OVERUSE_THRESHOLD:
        add("overused_domain", "critical")
    elif domain_use_count > OVERUSE_THRESHOLD:
        add("overused_domain", "warning")
    return violations


def article_status(violations: Sequence[Violation], *, error: str | None = None) -> ArticleStatus:
    if error is not None:
        return "fail"
    if any(violation.violation_type == "banned_domain" for violation in violations):
        return "fail"
    if violations:
        return "warning"
    return "pass"


def count_violations(violations: Iterable[Violation]) -> Counter[str]:
    return Counter(violation.violation_type for violation in violations)


def compute_compliance_score(
    counts: Mapping[str, int],
    total_citations: int,
    *,
    weights: Mapping[str, float] | None = None,
) -> float:
    if total_citations <= 0:
        return 100.0
    active_weights = weights or DEFAULT_WEIGHTS
    penalty = 0.0
    for violation_type in SCORED_VIOLATION_TYPES:
        weight = active_weights.get(violation_type, 0.0)
        penalty += weight * 10 * counts.get(violation_type, 0) / total_citations
    return round(max(0.0, min(100.0, 100.0 - penalty)), 2)


def plan_alert_changes(
    *,
    open_alerts: Sequence[Mapping[str, Any]],
    detected: Sequence[Violation],
    current_citations: Mapping[str, Sequence[str]],
) -> AlertPlan:
    """Reconcile open alerts against a fresh scan, one alert per (article, url)."""
    open_keys = {(str(alert["article_id"]), str(alert["citation_url"])) for alert in open_alerts}

    to_create: list[Violation] = []
    planned: set[tuple[str, str]] = set()
    for violation in detected:
        key = (violation.article_id, violation.citation_url)
        if key in open_keys or key in planned:
            continue
        planned.add(key)
        to_create.append(violation)

    to_resolve = find_stale_alert_ids(open_alerts=open_alerts, current_citations=current_citations)
    return AlertPlan(to_create=to_create, to_resolve=to_resolve, kept_open=len(open_alerts) - len(to_resolve))


def find_stale_alert_ids(
    *,
    open_alerts: Sequence[Mapping[str, Any]],
    current_citations: Mapping[str, Sequence[str]],
) -> list[str]:
    stale: list[str] = []
    for alert in open_alerts:
        urls = current_citations.get(str(alert["article_id"]), ())
        if alert.get("citation_url") not in urls:
            stale.append(str(alert["id"]))
    return stale


def violations_by_domain(violations: Iterable[Violation]) -> dict[str, int]:
    counter = Counter(violation.domain for violation in violations if violation.domain)
    return dict(counter.most_common())


def top_offenders(results: Iterable[ArticleScanResult], *, limit: int = 10) -> list[dict[str, Any]]:
    ranked = sorted(
        (result for result in results if result.violations),
        key=lambda result: (-len(result.violations), result.article_id),
    )
    return [{"article_id": result.article_id, "violations": len(result.violations)} for result in ranked[:limit]]


def build_recommendations(counts: Mapping[str, int], *, compliance_score: float) -> list[str]:
    recommendations: list[str] = []
    if counts.get("banned_domain"):
        recommendations.append(f"Remove {counts['banned_domain']} citations to banned domains")
    if counts.get("broken_link"):
        recommendations.append(f"Fix {counts['broken_link']} broken citations using auto-replacement")
    if counts.get("missing_inline"):
        recommendations.append(f"Place {counts['missing_inline']} citations inline in the article body")
    if counts.get("overused_domain"):
        recommendations.append(f"Diversify {counts['overused_domain']} citations on overused domains")
    if compliance_score < 90:
        recommendations.append(f"Improve compliance score from {compliance_score}% to 90%+")
    return recommendations
