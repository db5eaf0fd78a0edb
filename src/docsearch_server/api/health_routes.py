from typing import Annotated

from fastapi import APIRouter, Depends

from .dependencies import get_health_probe
from .models import HealthResponse
from ..health.probe import HealthProbe

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(
    probe: Annotated[HealthProbe, Depends(get_health_probe)],
) -> HealthResponse:
    return await probe.check()
