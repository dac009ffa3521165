"""
Health check endpoint - no authentication required
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..config import API_VERSION

router = APIRouter(tags=["health"])


@router.get("/healthz", include_in_schema=False)
def healthz(request: Request):
    status = request.app.state.manager.status()
    body = {"status": "ok" if status["ready"] else "not_ready", "app_version": API_VERSION, **status}
    return JSONResponse(status_code=200 if status["ready"] else 503, content=body)
