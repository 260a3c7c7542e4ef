from fastapi import APIRouter, Depends, HTTPException, status

from citeguard.api.deps import get_revision_service
from citeguard.core.security import get_human_principal
from citeguard.domain.errors import NotFoundError, RollbackAlreadyUsedError, RollbackExpiredError
from citeguard.schemas.revisions import RollbackOut
from citeguard.services.repository import RepositoryUnavailableError
from citeguard.services.revisions import RevisionService

router = APIRouter()


@router.post("/{revision_id}/rollback", response_model=RollbackOut)
async def rollback_revision(
    revision_id: str,
    principal=Depends(get_human_principal),
    service: RevisionService = Depends(get_revision_service),
) -> RollbackOut:
    try:
        principal.require_scopes({"revisions:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        result = await service.rollback(revision_id, actor=principal.actor_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RollbackExpiredError as exc:
        raise HTTPException(
            status_code=status.HTTP_410_GONE,
            detail={"reason": exc.reason, "message": str(exc)},
        ) from exc
    except RollbackAlreadyUsedError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"reason": exc.reason, "message": str(exc)},
        ) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return RollbackOut(**result)
