from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from quiz_engine.config import settings
from quiz_engine.core.ai_grading import AIGradingService, get_grading_service, request_ai_grading
from quiz_engine.core.logging import get_logger, grading_requests
from quiz_engine.core.retry import ProviderRateLimiter, get_rate_limiter
from quiz_engine.schemas import AIProvider, GradeApiRequest, GradingRequest, RateLimitStatus


logger = get_logger(__name__)

router = APIRouter(prefix="/ai", tags=["ai-grading"])


def _status_code(result) -> int:
    if result.success:
        return 200
    if result.needs_api_key:
        return 400
    if result.wait_time_ms is not None:
        return 429
    return 500


@router.post("/grade")
async def grade(
    req: GradeApiRequest,
    service: AIGradingService = Depends(get_grading_service),
    limiter: ProviderRateLimiter = Depends(get_rate_limiter),
):
    """Grade a free-text answer with the selected AI provider"""
    grading_request = GradingRequest(
        question_text=req.question_text,
        reference_answer=req.reference_answer,
        user_answer=req.user_answer,
        points=req.points,
    )
    result = await request_ai_grading(
        req.provider, grading_request,
        api_key=req.api_key, service=service, limiter=limiter,
    )

    status_code = _status_code(result)
    grading_requests.labels(endpoint="ai_grade", status=str(status_code)).inc()
    if status_code == 500:
        logger.error("AI grading failed", provider=req.provider.value, error=result.error)

    return JSONResponse(status_code=status_code, content=result.model_dump(exclude_none=True))


@router.get("/grade", response_model=RateLimitStatus)
async def rate_limit_status(
    provider: AIProvider,
    limiter: ProviderRateLimiter = Depends(get_rate_limiter),
):
    """Rate limit window and key availability for a provider"""
    info = limiter.get_rate_limit_info(provider.value)
    grading_requests.labels(endpoint="ai_grade_status", status="200").inc()
    return RateLimitStatus(
        provider=provider,
        has_api_key=settings.get_provider_api_key(provider.value) is not None,
        **info.model_dump(),
    )
