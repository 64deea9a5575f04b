"""Health check endpoint."""

from fastapi import APIRouter, Depends

from .. import __version__
from ..models import HealthResponse
from ..runtime import Runtime
from .deps import get_runtime

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(runtime: Runtime = Depends(get_runtime)):
    """Healthcheck endpoint."""
    store_ok = await runtime.store.check_connection()
    status = "healthy" if store_ok else "degraded"
    return HealthResponse(
        status=status,
        store_ok=store_ok,
        live_runs=runtime.engine.live_runs,
        version=__version__,
    )
