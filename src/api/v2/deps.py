"""Request dependencies shared by every router."""
from fastapi import Request

from src.core.service import MoodService


def get_service(request: Request) -> MoodService:
    return request.app.state.service


def force_refresh(request: Request) -> bool:
    """`force=1|true`, or a cache-busting `_` parameter, skips the cache."""
    params = request.query_params
    return params.get("force", "").lower() in ("1", "true") or "_" in params
