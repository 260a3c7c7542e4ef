from fastapi import Depends

from citeguard.core.config import Settings, get_settings
from citeguard.domain.compliance import DEFAULT_WEIGHTS
from citeguard.services.completion import CompletionClient
from citeguard.services.discovery import CitationDiscoveryService
from citeguard.services.hygiene import HygieneService
from citeguard.services.replacement_jobs import ReplacementJobService
from citeguard.services.repository import get_repository
from citeguard.services.revisions import RevisionService
from citeguard.services.scoring import CitationScoringService


def get_scoring_service(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> CitationScoringService:
    return CitationScoringService(repository, default_trust_score=settings.default_trust_score)


def get_discovery_service(
    settings: Settings = Depends(get_settings),
    scoring: CitationScoringService = Depends(get_scoring_service),
) -> CitationDiscoveryService:
    return CitationDiscoveryService(
        completion=CompletionClient.from_settings(settings),
        scoring=scoring,
        reachability_timeout_seconds=settings.reachability_timeout_seconds,
    )


def get_replacement_service(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    discovery: CitationDiscoveryService = Depends(get_discovery_service),
) -> ReplacementJobService:
    return ReplacementJobService(
        repository,
        discovery=discovery,
        chunk_size=settings.replacement_chunk_size,
        stall_minutes=settings.chunk_stall_minutes,
        heartbeat_every=settings.chunk_heartbeat_every,
        auto_apply_confidence=settings.auto_apply_confidence,
        rollback_window_hours=settings.rollback_window_hours,
        max_results=settings.diversity_max_results,
    )


def get_hygiene_service(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> HygieneService:
    return HygieneService(
        repository,
        banned_domains=settings.banned_domain_set(),
        weights={
            **DEFAULT_WEIGHTS,
            "banned_domain": settings.compliance_weight_banned_domain,
            "broken_link": settings.compliance_weight_broken_link,
            "missing_inline": settings.compliance_weight_missing_inline,
        },
        alert_threshold=settings.compliance_alert_threshold,
        scan_interval_hours=settings.compliance_scan_interval_hours,
        reachability_timeout_seconds=settings.reachability_timeout_seconds,
    )


def get_revision_service(repository=Depends(get_repository)) -> RevisionService:
    return RevisionService(repository)
