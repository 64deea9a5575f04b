"""Request dependencies shared by the routers."""

from fastapi import HTTPException, Request

from ..runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return runtime


def require_internal_key(runtime: Runtime) -> str:
    """The configured credential, or HTTP 500 when there is none."""
    internal_key = runtime.settings.internal_key
    if not internal_key:
        raise HTTPException(status_code=500, detail="Internal key not configured")
    return internal_key
