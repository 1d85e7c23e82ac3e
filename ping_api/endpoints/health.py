"""Health and stats endpoints."""

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness probe: ok whenever the process is up."""
    return {"status": "ok"}


@router.get("/stats")
def stats(request: Request):
    """Per-target totals plus background worker counters."""
    runtime = request.app.state.runtime
    return runtime.get_stats()
