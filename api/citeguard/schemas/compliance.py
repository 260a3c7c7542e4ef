from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class HygieneReportOut(BaseModel):
    id: str
    scan_date: datetime
    total_articles_scanned: int
    total_citations_scanned: int
    banned_citations_found: int
    broken_citations_found: int
    missing_inline_found: int
    overused_domains_found: int
    articles_with_violations: int
    articles_failed: int = 0
    compliance_score: float
    violations_by_domain: dict[str, int] = Field(default_factory=dict)
    top_offenders: list[dict[str, Any]] = Field(default_factory=list)
    article_results: list[dict[str, Any]] = Field(default_factory=list)
    scan_duration_ms: int | None = None
    next_scan_scheduled: datetime | None = None
    created_at: datetime | None = None


class AlertChangesOut(BaseModel):
    created: int
    resolved: int
    kept_open: int


class ComplianceScanOut(BaseModel):
    report: HygieneReportOut
    violations: list[dict[str, Any]] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    should_alert: bool
    alerts: AlertChangesOut
    failed_count: int = 0
    partial_failure: bool = False
    failures: list[dict[str, str]] = Field(default_factory=list)


class AlertCleanupOut(BaseModel):
    checked: int
    resolved: int
