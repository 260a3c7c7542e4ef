from fastapi import APIRouter, Depends, HTTPException, status

from citeguard.api.deps import get_discovery_service, get_scoring_service
from citeguard.core.security import get_operator_principal
from citeguard.domain.errors import AIResponseParseError, ExternalServiceError
from citeguard.domain.scoring import enforce_domain_diversity, rank_candidates
from citeguard.schemas.citations import (
    CitationDiscoverRequest,
    CitationDiscoverResponse,
    CitationScoreOut,
    CitationScoreRequest,
    CitationScoreResponse,
    SuggestionOut,
)
from citeguard.services.discovery import CitationDiscoveryService
from citeguard.services.repository import RepositoryUnavailableError, get_repository
from citeguard.services.scoring import CitationScoringService

router = APIRouter()


@router.post("/score", response_model=CitationScoreResponse)
async def score_citations(
    payload: CitationScoreRequest,
    principal=Depends(get_operator_principal),
    scoring: CitationScoringService = Depends(get_scoring_service),
) -> CitationScoreResponse:
    try:
        principal.require_scopes({"citations:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    scored = []
    excluded: list[str] = []
    for candidate in payload.candidates:
        score, stats = await scoring.score(candidate.url, candidate.relevance_score)
        if stats.excluded or not score.domain:
            excluded.append(candidate.url)
            continue
        scored.append(score)

    ranked = rank_candidates(scored)
    selected = enforce_domain_diversity(ranked, payload.max_results)
    if payload.log_scores:
        selected_urls = {score.url for score in selected}
        await scoring.log_scores(
            article_id=payload.article_id,
            scores=[(score, score.url in selected_urls) for score in ranked],
        )

    return CitationScoreResponse(
        scored=[CitationScoreOut(**score.as_dict()) for score in ranked],
        selected=[CitationScoreOut(**score.as_dict()) for score in selected],
        excluded=excluded,
    )


@router.post("/discover", response_model=CitationDiscoverResponse)
async def discover_citations(
    payload: CitationDiscoverRequest,
    principal=Depends(get_operator_principal),
    repository=Depends(get_repository),
    discovery: CitationDiscoveryService = Depends(get_discovery_service),
) -> CitationDiscoverResponse:
    try:
        principal.require_scopes({"citations:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        article = await repository.get_article(payload.article_id)
        if not article:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="article not found")
        result = await discovery.discover(
            article=article,
            citation_url=payload.citation_url,
            max_results=payload.max_results,
            context=payload.context,
        )
    except (ExternalServiceError, AIResponseParseError) as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return CitationDiscoverResponse(
        original_url=result.original_url,
        suggestions=[SuggestionOut(**suggestion.as_dict()) for suggestion in result.suggestions],
        total_found=result.total_found,
        verified_count=result.verified_count,
    )
