from fastapi import APIRouter, Depends, HTTPException, status

from citeguard.api.deps import get_replacement_service
from citeguard.core.security import get_operator_principal
from citeguard.domain.chunks import ReplacementItem
from citeguard.domain.errors import NotFoundError
from citeguard.schemas.replacement_jobs import (
    PollSummaryOut,
    ReplacementJobCreateRequest,
    ReplacementJobOut,
    ReplacementJobStatusOut,
    RestartOut,
)
from citeguard.services.replacement_jobs import ReplacementJobService
from citeguard.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

router = APIRouter()
chunks_router = APIRouter()


@router.post("", response_model=ReplacementJobOut, status_code=status.HTTP_201_CREATED)
async def create_replacement_job(
    payload: ReplacementJobCreateRequest,
    principal=Depends(get_operator_principal),
    service: ReplacementJobService = Depends(get_replacement_service),
) -> ReplacementJobOut:
    try:
        principal.require_scopes({"jobs:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        job = await service.enqueue(
            items=[
                ReplacementItem(article_id=item.article_id, citation_url=item.citation_url) for item in payload.items
            ],
            cited_urls=payload.citation_urls,
            created_by=principal.actor_label,
            chunk_size=payload.chunk_size,
        )
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return ReplacementJobOut(**job)


@router.post("/poll", response_model=PollSummaryOut)
async def poll_replacement_jobs(
    principal=Depends(get_operator_principal),
    service: ReplacementJobService = Depends(get_replacement_service),
) -> PollSummaryOut:
    try:
        principal.require_scopes({"jobs:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        summary = await service.poll_and_advance()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return PollSummaryOut(**summary.as_dict())


@router.get("/{job_id}", response_model=ReplacementJobStatusOut)
async def get_replacement_job(
    job_id: str,
    principal=Depends(get_operator_principal),
    service: ReplacementJobService = Depends(get_replacement_service),
) -> ReplacementJobStatusOut:
    try:
        principal.require_scopes({"jobs:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        job = await service.status(job_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return ReplacementJobStatusOut(**job)


@router.post("/{job_id}/restart", response_model=RestartOut)
async def restart_replacement_job(
    job_id: str,
    principal=Depends(get_operator_principal),
    service: ReplacementJobService = Depends(get_replacement_service),
) -> RestartOut:
    try:
        principal.require_scopes({"jobs:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        result = await service.restart_job(job_id)
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return RestartOut(**result)


@chunks_router.post("/{chunk_id}/restart", response_model=RestartOut)
async def restart_replacement_chunk(
    chunk_id: str,
    principal=Depends(get_operator_principal),
    service: ReplacementJobService = Depends(get_replacement_service),
) -> RestartOut:
    try:
        principal.require_scopes({"jobs:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        result = await service.restart_chunk(chunk_id)
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return RestartOut(**result)
