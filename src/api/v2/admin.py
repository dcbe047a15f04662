"""Admin endpoints (token protected)."""
import hmac

import structlog
from fastapi import APIRouter, Depends, HTTPException

from src.api.v2.deps import get_service
from src.api.v2.models import PurgeRequest
from src.core.service import MoodService

router = APIRouter(prefix="/admin", tags=["Admin"])
logger = structlog.get_logger()


@router.post("/purge-legacy-cache")
async def purge_legacy_cache(req: PurgeRequest, service: MoodService = Depends(get_service)):
    """Delete cached entries written by another provider, or no longer decodable."""
    expected = service.cfg.admin_purge_token
    if not expected or not hmac.compare_digest(req.token.encode(), expected.encode()):
        logger.warning("admin.purge_forbidden")
        raise HTTPException(status_code=403, detail="Forbidden - invalid or missing token")
    return await service.purge_legacy_cache()
