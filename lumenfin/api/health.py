"""Liveness endpoint."""

from fastapi import APIRouter, Depends

from lumenfin.config import Settings, get_settings
from lumenfin.models.responses import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health(config: Settings = Depends(get_settings)) -> HealthResponse:
    return HealthResponse(
        version=config.app_version,
        service=config.app_name,
        vectorstore=config.vectorstore_type,
        search_mode=config.search_mode,
    )
