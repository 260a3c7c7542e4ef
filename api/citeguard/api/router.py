from fastapi import APIRouter

from citeguard.api.routes import citations, compliance, health, replacement_jobs, revisions

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(replacement_jobs.router, prefix="/replacement-jobs", tags=["replacement"])
api_router.include_router(replacement_jobs.chunks_router, prefix="/replacement-chunks", tags=["replacement"])
api_router.include_router(revisions.router, prefix="/revisions", tags=["revisions"])
api_router.include_router(citations.router, prefix="/citations", tags=["citations"])
api_router.include_router(compliance.router, prefix="/compliance", tags=["compliance"])
