"""POST /ai-analysis and /ai-analysis-enhanced: market mood from chart signals."""
from fastapi import APIRouter, Depends

from src.api.v2.deps import get_service
from src.core.sentiment.mood import MoodRequest
from src.core.service import MoodService

router = APIRouter(tags=["Analysis"])


@router.post("/ai-analysis")
async def ai_analysis(req: MoodRequest, service: MoodService = Depends(get_service)):
    result = await service.classify_mood(req)
    return result.as_response()


@router.post("/ai-analysis-enhanced")
async def ai_analysis_enhanced(req: MoodRequest, service: MoodService = Depends(get_service)):
    """Same as /ai-analysis, with candlestick patterns weighed in."""
    result = await service.classify_mood(req, enhanced=True)
    return result.as_response()
