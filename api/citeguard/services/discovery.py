from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

import httpx

from citeguard.core.urls import is_http_url
from citeguard.domain.ai_json import ParseFailure, parse_json_payload
from citeguard.domain.chunks import confidence_from_scores
from citeguard.domain.errors import AIResponseParseError
from citeguard.domain.scoring import CitationScore, enforce_domain_diversity, rank_candidates
from citeguard.services.completion import CompletionClient
from citeguard.services.reachability import check_urls_reachable
from citeguard.services.scoring import CitationScoringService

logger = logging.getLogger(__name__)

ARTICLE_PREVIEW_CHARS = 1000

LANGUAGE_CONFIG: dict[str, dict[str, Any]] = {
    "es": {"name": "Spanish", "domains": [".gob.es", ".es"]},
    "en": {"name": "English", "domains": [".gov", ".gov.uk", ".edu"]},
    "nl": {"name": "Dutch", "domains": [".nl", ".overheid.nl"]},
    "de": {"name": "German", "domains": [".de", ".gov.de"]},
}
DEFAULT_LANGUAGE = "es"


@dataclass(slots=True, frozen=True)
class Suggestion:
    suggested_url: str
    source_name: str | None
    relevance_score: float
    authority_score: float | None
    reason: str | None
    language: str | None


@dataclass(slots=True, frozen=True)
class ScoredSuggestion:
    suggestion: Suggestion
    score: CitationScore
    verified: bool
    status_code: int | None

    @property
    def confidence(self) -> float:
        return confidence_from_scores(self.suggestion.relevance_score, self.suggestion.authority_score)

    def as_dict(self) -> dict[str, Any]:
        return {
            "suggested_url": self.suggestion.suggested_url,
            "source_name": self.suggestion.source_name,
            "relevance_score": self.suggestion.relevance_score,
            "authority_score": self.suggestion.authority_score,
            "reason": self.suggestion.reason,
            "language": self.suggestion.language,
            "verified": self.verified,
            "status_code": self.status_code,
            "confidence": self.confidence,
            "score": self.score.as_dict(),
        }


@dataclass(slots=True)
class DiscoveryResult:
    original_url: str
    suggestions: list[ScoredSuggestion] = field(default_factory=list)
    total_found: int = 0
    verified_count: int = 0

    @property
    def best(self) -> ScoredSuggestion | None:
        return self.suggestions[0] if self.suggestions else None


class CitationDiscoveryService:
    def __init__(
        self,
        *,
        completion: CompletionClient,
        scoring: CitationScoringService,
        reachability_timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.completion = completion
        self.scoring = scoring
        self.reachability_timeout_seconds = reachability_timeout_seconds
        self.http_client = http_client

    async def discover(
        self,
        *,
        article: dict[str, Any],
        citation_url: str,
        max_results: int = 5,
        context: str | None = None,
    ) -> DiscoveryResult:
        language = article.get("language") or DEFAULT_LANGUAGE
        config = LANGUAGE_CONFIG.get(language, LANGUAGE_CONFIG[DEFAULT_LANGUAGE])
        system_prompt, user_prompt = build_discovery_prompts(
            citation_url=citation_url,
            headline=article.get("headline") or "",
            content=article.get("detailed_content") or "",
            language_name=config["name"],
            preferred_domains=config["domains"],
            context=context,
        )

        raw = await self.completion.complete(system=system_prompt, user=user_prompt)
        parsed = parse_json_payload(raw, expect="array")
        if isinstance(parsed, ParseFailure):
            raise AIResponseParseError(f"failed to parse AI response: {parsed.reason}", raw_excerpt=parsed.raw_excerpt)

        suggestions = [
            suggestion
            for suggestion in (_coerce_suggestion(item) for item in parsed.value)
            if suggestion is not None and suggestion.suggested_url != citation_url
        ]
        result = DiscoveryResult(original_url=citation_url, total_found=len(suggestions))
        if not suggestions:
            return result

        reachability = await check_urls_reachable(
            [suggestion.suggested_url for suggestion in suggestions],
            client=self.http_client,
            timeout_seconds=self.reachability_timeout_seconds,
        )

        candidates: list[ScoredSuggestion] = []
        rejected: list[CitationScore] = []
        for suggestion in suggestions:
            check = reachability.get(suggestion.suggested_url)
            score, stats = await self.scoring.score(suggestion.suggested_url, suggestion.relevance_score)
            verified = bool(check and check.reachable)
            if not verified or stats.excluded or not score.domain:
                rejected.append(score)
                continue
            candidates.append(
                ScoredSuggestion(
                    suggestion=suggestion,
                    score=score,
                    verified=verified,
                    status_code=check.status_code if check else None,
                )
            )

        selected = enforce_domain_diversity(rank_candidates(candidates), max_results)
        selected_urls = {candidate.suggestion.suggested_url for candidate in selected}
        await self.scoring.log_scores(
            article_id=article.get("id"),
            scores=[
                (candidate.score, candidate.suggestion.suggested_url in selected_urls) for candidate in candidates
            ]
            + [(score, False) for score in rejected],
        )

        result.suggestions = selected
        result.verified_count = len(candidates)
        logger.info(
            "citation discovery original_url=%s found=%s verified=%s selected=%s",
            citation_url,
            result.total_found,
            result.verified_count,
            len(selected),
        )
        return result


def build_discovery_prompts(
    *,
    citation_url: str,
    headline: str,
    content: str,
    language_name: str,
    preferred_domains: list[str],
    context: str | None = None,
) -> tuple[str, str]:
    system_prompt = (
        f"You are an expert research assistant finding authoritative {language_name}-language sources. "
        "Always prioritize government and educational sources. Return only valid JSON arrays."
    )
    user_prompt = f"""Find 3-5 HIGH-QUALITY alternative sources to replace this broken or irrelevant link.

Original (Broken) Link: {citation_url}
Article Topic: "{headline}"
Context in Article: {context or 'General reference'}
Language Required: {language_name}

Article Preview:
{content[:ARTICLE_PREVIEW_CHARS]}

REQUIREMENTS:
- ALL sources MUST be in {language_name} language
- Prioritize official government domains ({', '.join(preferred_domains)})
- Sources must be authoritative (.gov, .edu, .org, official institutions)
- Sources must be currently accessible (HTTPS, active)
- Sources must be HIGHLY RELEVANT to the article topic
- Prefer recent sources (published within last 3 years)

Return ONLY valid JSON array:
[
  {{
    "suggestedUrl": "https://example.gob.es/...",
    "sourceName": "Official Source Name",
    "relevanceScore": 95,
    "authorityScore": 9,
    "reason": "Why this source is better than the original",
    "language": "es"
  }}
]

Return only the JSON array, nothing else."""
    return system_prompt, user_prompt


def _coerce_suggestion(item: Any) -> Suggestion | None:
    if not isinstance(item, dict):
        return None
    url = item.get("suggestedUrl") or item.get("url")
    if not isinstance(url, str) or not is_http_url(url):
        return None
    relevance = _as_float(item.get("relevanceScore"))
    return Suggestion(
        suggested_url=url.strip(),
        source_name=_as_text(item.get("sourceName")),
        relevance_score=relevance if relevance is not None else 0.0,
        authority_score=_as_float(item.get("authorityScore")),
        reason=_as_text(item.get("reason")),
        language=_as_text(item.get("language")),
    )


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
