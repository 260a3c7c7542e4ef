from typing import Any

from pydantic import BaseModel, Field


class CitationCandidateIn(BaseModel):
    url: str = Field(min_length=1)
    relevance_score: float = Field(ge=0, le=100)


class CitationScoreRequest(BaseModel):
    candidates: list[CitationCandidateIn] = Field(min_length=1, max_length=50)
    article_id: str | None = None
    max_results: int = Field(default=5, ge=0, le=50)
    log_scores: bool = True


class CitationScoreOut(BaseModel):
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


class CitationScoreResponse(BaseModel):
    scored: list[CitationScoreOut] = Field(default_factory=list)
    selected: list[CitationScoreOut] = Field(default_factory=list)
    excluded: list[str] = Field(default_factory=list)


class CitationDiscoverRequest(BaseModel):
    article_id: str = Field(min_length=1)
    citation_url: str = Field(min_length=1)
    context: str | None = None
    max_results: int = Field(default=5, ge=1, le=10)


class SuggestionOut(BaseModel):
    suggested_url: str
    source_name: str | None = None
    relevance_score: float
    authority_score: float | None = None
    reason: str | None = None
    language: str | None = None
    verified: bool
    status_code: int | None = None
    confidence: float
    score: dict[str, Any] = Field(default_factory=dict)


class CitationDiscoverResponse(BaseModel):
    original_url: str
    suggestions: list[SuggestionOut] = Field(default_factory=list)
    total_found: int = 0
    verified_count: int = 0
