from fastapi import APIRouter, Depends, HTTPException, status

from citeguard.api.deps import get_hygiene_service
from citeguard.core.security import get_operator_principal
from citeguard.schemas.compliance import AlertCleanupOut, ComplianceScanOut, HygieneReportOut
from citeguard.services.hygiene import HygieneService
from citeguard.services.repository import RepositoryUnavailableError

router = APIRouter()


@router.post("/scan", response_model=ComplianceScanOut)
async def run_compliance_scan(
    principal=Depends(get_operator_principal),
    service: HygieneService = Depends(get_hygiene_service),
) -> ComplianceScanOut:
    try:
        principal.require_scopes({"compliance:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        result = await service.scan()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return ComplianceScanOut(**result)


@router.get("/reports/latest", response_model=HygieneReportOut)
async def get_latest_report(
    principal=Depends(get_operator_principal),
    service: HygieneService = Depends(get_hygiene_service),
) -> HygieneReportOut:
    try:
        principal.require_scopes({"compliance:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        report = await service.latest_report()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if not report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="no hygiene report yet")
    return HygieneReportOut(**report)


@router.post("/alerts/cleanup", response_model=AlertCleanupOut)
async def cleanup_stale_alerts(
    principal=Depends(get_operator_principal),
    service: HygieneService = Depends(get_hygiene_service),
) -> AlertCleanupOut:
    try:
        principal.require_scopes({"compliance:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        result = await service.cleanup_stale_alerts()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return AlertCleanupOut(**result)
