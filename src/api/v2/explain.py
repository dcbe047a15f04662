"""POST /ai-explain: narration anchored to server-computed numbers."""
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.api.v2.deps import get_service
from src.api.v2.headers import narration_headers
from src.core.narration.request import ExplainRequest
from src.core.service import MoodService

router = APIRouter(tags=["Explain"])


@router.post("/ai-explain")
async def ai_explain(req: ExplainRequest, service: MoodService = Depends(get_service)):
    """Always answers 200 with an explanation; X-AI-Status says how it was produced."""
    started = time.perf_counter()
    result = await service.explain(req)
    return JSONResponse(result.as_response(), headers=narration_headers(result, started))
