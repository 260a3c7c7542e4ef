from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

from citeguard.core.urls import extract_domain

DEFAULT_TRUST_SCORE = 50
OVERUSE_THRESHOLD = 50
CRITICAL_OVERUSE_THRESHOLD = 100
OVERUSE_PENALTY_PER_USE = 1.5
DEFAULT_MAX_RESULTS = 5

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class ApprovedDomainRecord:
    domain: str
    trust_score: int
    is_allowed: bool


@dataclass(slots=True, frozen=True)
class DomainStats:
    domain: str
    trust_score: int
    domain_use_count: int
    excluded: bool = False


@dataclass(slots=True, frozen=True)
class CitationScore:
    url: str
    domain: str
    relevance_score: float
    trust_score: int
    novelty_boost: int
    overuse_penalty: float
    final_score: float
    domain_use_count: int
    is_overused: bool
    is_critical_overuse: bool

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def resolve_domain_stats(
    domain: str,
    *,
    approved: ApprovedDomainRecord | None,
    total_uses: int | None,
    default_trust_score: int = DEFAULT_TRUST_SCORE,
) -> DomainStats:
    """Trust falls back to the default both for unknown and for disallowed domains.

    A disallowed record is still reported through `excluded` so candidate
    selection can drop it instead of ranking it low.
    """
    trust_score = default_trust_score
    excluded = False
    if approved is not None:
        if approved.is_allowed:
            trust_score = _clamp_trust(approved.trust_score, default=default_trust_score)
        else:
            excluded = True
    return DomainStats(
        domain=domain,
        trust_score=trust_score,
        domain_use_count=max(0, int(total_uses or 0)),
        excluded=excluded,
    )


def novelty_boost(domain_use_count: int) -> int:
    if domain_use_count < 5:
        return 20
    if domain_use_count < 10:
        return 10
    return 0


def overuse_penalty(domain_use_count: int) -> float:
    return domain_use_count * OVERUSE_PENALTY_PER_USE


def calculate_citation_score(url: str, relevance_score: float, stats: DomainStats) -> CitationScore:
    usage = stats.domain_use_count
    boost = novelty_boost(usage)
    penalty = overuse_penalty(usage)
    final_score = relevance_score + (stats.trust_score / 10) + boost - penalty
    return CitationScore(
        url=url,
        domain=stats.domain or extract_domain(url),
        relevance_score=relevance_score,
        trust_score=stats.trust_score,
        novelty_boost=boost,
        overuse_penalty=penalty,
        final_score=final_score,
        domain_use_count=usage,
        is_overused=usage > OVERUSE_THRESHOLD,
        is_critical_overuse=usage > CRITICAL_OVERUSE_THRESHOLD,
    )


def rank_candidates(candidates: Iterable[T], *, score_of: Callable[[T], float] | None = None) -> list[T]:
    """Stable sort by final score, highest first."""
    key = score_of or _default_score_of
    return sorted(candidates, key=lambda item: -key(item))


def enforce_domain_diversity(
    candidates: Sequence[T],
    max_results: int = DEFAULT_MAX_RESULTS,
    *,
    domain_of: Callable[[T], str] | None = None,
) -> list[T]:
    """Greedy single pass: keep the first candidate of every unseen domain.

    Input order decides ties and exclusions, so callers rank first.
    """
    if max_results <= 0:
        return []
    key = domain_of or _default_domain_of
    diversified: list[T] = []
    used_domains: set[str] = set()
    for candidate in candidates:
        domain = key(candidate)
        if domain in used_domains:
            continue
        diversified.append(candidate)
        used_domains.add(domain)
        if len(diversified) >= max_results:
            break
    return diversified


def _default_score_of(item: Any) -> float:
    score = item if isinstance(item, CitationScore) else item.score
    return score.final_score


def _default_domain_of(item: Any) -> str:
    score = item if isinstance(item, CitationScore) else item.score
    return score.domain


def _clamp_trust(value: Any, *, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if parsed <= 0:
        return default
    return min(100, parsed)
