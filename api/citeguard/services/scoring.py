from __future__ import annotations

from collections.abc import Sequence
import logging
from typing import Any

from citeguard.core.urls import extract_domain
from citeguard.domain.scoring import (
    DEFAULT_TRUST_SCORE,
    CitationScore,
    DomainStats,
    calculate_citation_score,
    resolve_domain_stats,
)
from citeguard.services.repository import RepositoryError

logger = logging.getLogger(__name__)


class DomainTrustLookup:
    def __init__(self, repository: Any, *, default_trust_score: int = DEFAULT_TRUST_SCORE) -> None:
        self.repository = repository
        self.default_trust_score = default_trust_score

    async def lookup(self, url: str) -> DomainStats:
        domain = extract_domain(url)
        if not domain:
            return DomainStats(domain="", trust_score=self.default_trust_score, domain_use_count=0)

        try:
            approved = await self.repository.get_approved_domain(domain)
            total_uses = await self.repository.get_domain_usage(domain)
        except RepositoryError as exc:
            logger.warning("domain lookup failed domain=%s error=%s; using defaults", domain, exc)
            approved = None
            total_uses = 0

        return resolve_domain_stats(
            domain,
            approved=approved,
            total_uses=total_uses,
            default_trust_score=self.default_trust_score,
        )


class CitationScoringService:
    def __init__(self, repository: Any, *, default_trust_score: int = DEFAULT_TRUST_SCORE) -> None:
        self.repository = repository
        self.lookup = DomainTrustLookup(repository, default_trust_score=default_trust_score)

    async def score(self, url: str, relevance_score: float) -> tuple[CitationScore, DomainStats]:
        stats = await self.lookup.lookup(url)
        return calculate_citation_score(url, relevance_score, stats), stats

    async def log_scores(
        self,
        *,
        article_id: str | None,
        scores: Sequence[tuple[CitationScore, bool]],
    ) -> None:
        """Audit log writes never fail the caller."""
        try:
            await self.repository.insert_citation_score_logs(article_id=article_id, scores=scores)
        except Exception as exc:
            logger.warning("citation score log failed article_id=%s count=%s error=%s", article_id, len(scores), exc)

    async def log_score(self, score: CitationScore, *, article_id: str | None, was_selected: bool) -> None:
        await self.log_scores(article_id=article_id, scores=[(score, was_selected)])
