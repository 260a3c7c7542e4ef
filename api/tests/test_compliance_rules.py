from citeguard.domain.compliance import (
    Violation,
    article_status,
    build_recommendations,
    classify_citation,
    compute_compliance_score,
    find_stale_alert_ids,
    plan_alert_changes,
)


def _violation(article_id: str, url: str, violation_type: str = "broken_link") -> Violation:
    return Violation(
        article_id=article_id,
        citation_url=url,
        violation_type=violation_type,  # type: ignore[arg-type]
        severity="warning",
        domain="example.org",
    )


def test_compliance_score_is_100_without_citations() -> None:
    assert compute_compliance_score({}, 0) == 100.0
    assert compute_compliance_score({"banned_domain": 3}, 0) == 100.0


def test_compliance_score_weights_violation_rates() -> None:
    # 10% banned costs 10 points.
    assert compute_compliance_score({"banned_domain": 10}, 100) == 90.0
    assert compute_compliance_score({"broken_link": 10}, 100) == 95.0
    assert compute_compliance_score({"missing_inline": 10}, 100) == 98.0


def test_compliance_score_ignores_overuse_and_clamps() -> None:
    assert compute_compliance_score({"overused_domain": 50}, 100) == 100.0
    assert compute_compliance_score({"banned_domain": 100, "broken_link": 100}, 100) == 0.0
    assert compute_compliance_score({"broken_link": 1}, 3) == 83.33


def test_classify_citation_flags_banned_broken_and_missing_inline() -> None:
    violations = classify_citation(
        article_id="a1",
        citation_url="https://cdn.spam.example/post",
        content="<p>No link here</p>",
        banned_domains={"spam.example"},
        reachable=False,
        domain_use_count=0,
    )

    assert [violation.violation_type for violation in violations] == [
        "banned_domain",
        "broken_link",
        "missing_inline",
    ]
    assert violations[0].severity == "critical"
    assert article_status(violations) == "fail"


def test_classify_citation_overuse_is_alert_only() -> None:
    url = "https://popular.example/a"
    violations = classify_citation(
        article_id="a1",
        citation_url=url,
        content=f'<a href="{url}">source</a>',
        banned_domains=set(),
        reachable=True,
        domain_use_count=120,
    )

    assert [(violation.violation_type, violation.severity) for violation in violations] == [
        ("overused_domain", "critical")
    ]
    assert article_status(violations) == "warning"
    assert article_status([]) == "pass"
    assert article_status([], error="boom") == "fail"


def test_plan_alert_changes_is_idempotent_per_article_and_url() -> None:
    open_alerts = [
        {"id": "alert-1", "article_id": "a1", "citation_url": "https://x.org/1"},
        {"id": "alert-2", "article_id": "a1", "citation_url": "https://x.org/gone"},
    ]
    detected = [
        _violation("a1", "https://x.org/1"),
        _violation("a1", "https://x.org/1", "missing_inline"),
        _violation("a2", "https://x.org/1"),
        _violation("a2", "https://x.org/1", "missing_inline"),
    ]
    current = {"a1": ["https://x.org/1"], "a2": ["https://x.org/1"]}

    plan = plan_alert_changes(open_alerts=open_alerts, detected=detected, current_citations=current)

    assert [(violation.article_id, violation.citation_url) for violation in plan.to_create] == [
        ("a2", "https://x.org/1")
    ]
    assert plan.to_resolve == ["alert-2"]
    assert plan.kept_open == 1


def test_find_stale_alert_ids_treats_missing_article_as_stale() -> None:
    open_alerts = [{"id": "alert-9", "article_id": "deleted", "citation_url": "https://x.org"}]

    assert find_stale_alert_ids(open_alerts=open_alerts, current_citations={}) == ["alert-9"]


def test_build_recommendations_mentions_each_problem() -> None:
    recommendations = build_recommendations(
        {"banned_domain": 2, "broken_link": 3},
        compliance_score=72.5,
    )

    assert any("banned" in item for item in recommendations)
    assert any("broken" in item for item in recommendations)
    assert recommendations[-1] == "Improve compliance score from 72.5% to 90%+"
