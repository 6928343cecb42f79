"""
AI grading of free-text answers through LangChain chat models
"""
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union
from abc import ABC, abstractmethod
import asyncio
import json
import math
import re
import time

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI

from quiz_engine.config import provider_env_var, settings
from quiz_engine.core.check_answer import round_points, summarize_results
from quiz_engine.core.exceptions import (
    AIGradingError,
    MissingAPIKeyError,
    RateLimitError,
    ResponseParseError,
)
from quiz_engine.core.logging import get_logger, log_execution_time, metrics_logger
from quiz_engine.core.retry import (
    ProviderRateLimiter,
    get_grading_retry,
    grading_rate_limiter,
)
from quiz_engine.schemas import (
    AIProvider,
    BaseQuestion,
    CheckResult,
    FreeTextQuestion,
    FreeTextResult,
    GradingRequest,
    GradingResponse,
    QuestionType,
    RawGradingResult,
    ScoreSummary,
    UserAnswer,
    parse_question,
)
from quiz_engine.utils.rich_text import get_plain_text

logger = get_logger(__name__)


DEFAULT_FEEDBACK = "Graded by AI"

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
_CORRECT_FIELD_RE = re.compile(r'"correct"\s*:\s*(true|false)', re.IGNORECASE)
_SCORE_FIELD_RE = re.compile(r'"score"\s*:\s*(\d+(?:\.\d+)?)')
_FEEDBACK_FIELD_RE = re.compile(r'"feedback"\s*:\s*"([^"]*)"')


def build_grading_prompt(request: GradingRequest) -> str:
    points = f"{request.points:g}"
    prompt = (
        "You are grading a student's answer to a quiz question. Be fair but accurate.\n"
        "\n"
        f"Question: {request.question_text}\n"
        f"Points possible: {points}"
    )
    if request.reference_answer:
        prompt += f"\nExpected Answer: {request.reference_answer}"

    prompt += (
        f"\nStudent's Answer: {request.user_answer}\n"
        "\n"
        "Evaluate the student's answer and respond ONLY with valid JSON:\n"
        f'{{"correct": true, "score": {points}, "feedback": "Your feedback here"}}\n'
        "\n"
        "Rules:\n"
        '- "correct": true if substantially correct, false otherwise\n'
        f'- "score": Integer 0 to {points}\n'
        '- "feedback": Max 2 sentences, under 100 words\n'
        "\n"
        "IMPORTANT: Respond with ONLY raw JSON. No markdown, no code fences."
    )
    return prompt


def _extract_balanced_json(text: str) -> Optional[str]:
    """First {...} object in text, honouring string literals and escapes."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for index in range(start, len(text)):
        char = text[index]
        if escape:
            escape = False
            continue
        if char == "\\":
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def _process_raw_json(data: Any, points: float) -> RawGradingResult:
    if not isinstance(data, dict):
        raise ValueError("grading response is not a JSON object")
    raw_score = data.get("score")
    if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)):
        raw_score = 0
    feedback = data.get("feedback")
    return RawGradingResult(
        correct=bool(data.get("correct")),
        score=min(max(0.0, float(raw_score)), points),
        feedback=feedback if isinstance(feedback, str) else DEFAULT_FEEDBACK,
    )


def parse_grading_response(text: str, points: float) -> RawGradingResult:
    """Parse a provider reply into a RawGradingResult.

    Tries, in order: a fenced ```json block, the whole reply as JSON, the
    first balanced {...} object, and finally regex extraction of the
    "correct" and "score" fields. The score is clamped to [0, points].

    Raises:
        ResponseParseError: when no strategy yields a result
    """
    text = text or ""
    candidates = []
    fenced = _CODE_BLOCK_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    candidates.append(text.strip())
    balanced = _extract_balanced_json(text)
    if balanced:
        candidates.append(balanced)

    for candidate in candidates:
        try:
            return _process_raw_json(json.loads(candidate), points)
        except ValueError:
            continue

    correct_match = _CORRECT_FIELD_RE.search(text)
    score_match = _SCORE_FIELD_RE.search(text)
    if correct_match and score_match:
        feedback_match = _FEEDBACK_FIELD_RE.search(text)
        return RawGradingResult(
            correct=correct_match.group(1).lower() == "true",
            score=min(max(0.0, float(score_match.group(1))), points),
            feedback=(feedback_match.group(1) if feedback_match else "") or DEFAULT_FEEDBACK,
        )

    logger.warning("ai_grading_unparseable_response", preview=text[:200])
    raise ResponseParseError("Failed to parse AI response", {"preview": text[:200]})


def _message_text(content: Any) -> str:
    """Flatten AIMessage.content, which may be a string or a list of blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type", "text") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


class GradingProvider(ABC):
    """Abstract base class for grading providers"""

    @abstractmethod
    async def grade(self, request: GradingRequest) -> GradingResponse:
        """Grade one answer; may raise on transport or parse failure"""
        pass


class LangChainGradingProvider(GradingProvider):
    """LangChain chat model configured for one provider and API key"""

    def __init__(self, provider: Union[AIProvider, str], api_key: str):
        self.provider = AIProvider(provider)
        self.api_key = api_key
        self.model = self._initialize_model()

    def _initialize_model(self):
        if self.provider == AIProvider.GEMINI:
            return ChatGoogleGenerativeAI(
                model=settings.gemini_model,
                google_api_key=self.api_key,
                temperature=settings.ai_grading_temperature,
                max_output_tokens=settings.ai_grading_max_tokens,
                timeout=settings.ai_grading_timeout,
                max_retries=settings.ai_grading_max_retries,
            )
        if self.provider == AIProvider.DEEPSEEK:
            # OpenAI-compatible endpoint
            return ChatOpenAI(
                model=settings.deepseek_model,
                openai_api_key=self.api_key,
                base_url=settings.deepseek_base_url,
                temperature=settings.ai_grading_temperature,
                max_tokens=settings.ai_grading_max_tokens,
                timeout=settings.ai_grading_timeout,
                max_retries=settings.ai_grading_max_retries,
            )
        if self.provider == AIProvider.CLAUDE:
            return ChatAnthropic(
                model=settings.claude_model,
                anthropic_api_key=self.api_key,
                temperature=settings.ai_grading_temperature,
                max_tokens=settings.ai_grading_max_tokens,
                timeout=settings.ai_grading_timeout,
                max_retries=settings.ai_grading_max_retries,
            )
        return ChatOpenAI(
            model=settings.openai_model,
            openai_api_key=self.api_key,
            temperature=settings.ai_grading_temperature,
            max_tokens=settings.ai_grading_max_tokens,
            timeout=settings.ai_grading_timeout,
            max_retries=settings.ai_grading_max_retries,
        )

    async def grade(self, request: GradingRequest) -> GradingResponse:
        messages = [HumanMessage(content=build_grading_prompt(request))]
        try:
            response = await self.model.ainvoke(messages)
        except Exception as e:
            raise AIGradingError(f"{self.provider.value} API error: {e}", {"provider": self.provider.value}) from e
        text = _message_text(response.content)
        if not text.strip():
            raise ResponseParseError(f"No response from {self.provider.value}")

        result = parse_grading_response(text, request.points)
        score = result.score / request.points if request.points > 0 else 0.0
        return GradingResponse(
            success=True,
            correct=result.correct,
            score=min(1.0, max(0.0, score)),
            feedback=result.feedback,
        )


ProviderFactory = Callable[[AIProvider, str], GradingProvider]


class AIGradingService:
    """Dispatches grading requests to per-provider LangChain models"""

    def __init__(self, provider_factory: Optional[ProviderFactory] = None):
        self.provider_factory = provider_factory or LangChainGradingProvider

    async def grade_answer(self, provider: Union[AIProvider, str], api_key: str,
                           request: GradingRequest) -> GradingResponse:
        """Grade with the given provider; failures come back as success=False."""
        provider_name = provider.value if isinstance(provider, AIProvider) else str(provider)
        start_time = time.time()
        metrics_logger.log_ai_grading_request(provider_name, request.points, len(request.user_answer))

        try:
            grader = self.provider_factory(AIProvider(provider), api_key)
            response = await grader.grade(request)
        except Exception as e:
            # SDKs raise assorted transport errors; all of them become a failed response
            error = str(e) or type(e).__name__
            metrics_logger.log_ai_grading_complete(
                provider_name, time.time() - start_time, success=False, error=error
            )
            return GradingResponse(success=False, error=error)

        metrics_logger.log_ai_grading_complete(provider_name, time.time() - start_time)
        return response


async def request_ai_grading(
    provider: Union[AIProvider, str],
    request: GradingRequest,
    api_key: Optional[str] = None,
    service: Optional[AIGradingService] = None,
    limiter: Optional[ProviderRateLimiter] = None,
) -> GradingResponse:
    """Resolve the API key, apply rate limiting, then grade.

    A caller supplied key wins over the configured one. Missing keys yield
    needs_api_key; throttled requests yield wait_time_ms and never reach
    the provider.
    """
    provider = AIProvider(provider)
    service = service or get_grading_service()
    limiter = limiter or grading_rate_limiter

    key = (api_key or "").strip() or settings.get_provider_api_key(provider.value)
    if not key:
        error = MissingAPIKeyError(provider.value, provider_env_var(provider.value))
        logger.warning("ai_grading_missing_key", provider=provider.value)
        return GradingResponse(success=False, error=error.message, needs_api_key=True)

    info = limiter.get_rate_limit_info(provider.value)
    if not info.can_request:
        metrics_logger.log_rate_limited(provider.value, info.wait_time_ms)
        seconds = math.ceil(info.wait_time_ms / 1000)
        error = RateLimitError(f"Rate limited. Try again in {seconds} seconds.", retry_after=seconds)
        return GradingResponse(
            success=False,
            error=error.message,
            wait_time_ms=info.wait_time_ms,
        )

    limiter.record_request(provider.value)
    return await service.grade_answer(provider, key, request)


def _ai_error_result(question: FreeTextQuestion, reference_answer: Optional[str],
                     error: str) -> CheckResult:
    return CheckResult(
        type=QuestionType.FREE_TEXT,
        is_correct=False,
        earned_points=0,
        max_points=question.points,
        free_text_result=FreeTextResult(
            is_correct=False,
            reference_answer=reference_answer,
            graded_by_ai=False,
            ai_error=error,
        ),
    )


async def grade_with_ai(
    question: FreeTextQuestion,
    user_answer: UserAnswer,
    provider: Union[AIProvider, str],
    *,
    api_key: Optional[str] = None,
    service: Optional[AIGradingService] = None,
    limiter: Optional[ProviderRateLimiter] = None,
    max_attempts: int = 1,
) -> CheckResult:
    """Grade a free-text answer with AI and fold the outcome into a CheckResult.

    Never raises: any failure becomes an incorrect zero-point result with
    ``ai_error`` set and ``graded_by_ai`` False.
    """
    reference_answer = get_plain_text(question.reference_answer).strip() or None
    user_text = (user_answer if isinstance(user_answer, str) else "").strip()
    if not user_text:
        return _ai_error_result(question, reference_answer, "No answer provided")

    try:
        request = GradingRequest(
            question_text=get_plain_text(question.text).strip(),
            reference_answer=reference_answer,
            user_answer=user_text,
            points=question.points,
        )
        if max_attempts > 1:
            retrying = get_grading_retry(max_attempts)
            response = await retrying(
                request_ai_grading, provider, request,
                api_key=api_key, service=service, limiter=limiter,
            )
        else:
            response = await request_ai_grading(
                provider, request, api_key=api_key, service=service, limiter=limiter
            )
    except Exception as e:
        logger.error("ai_grading_bridge_failed", question_id=question.id, error=str(e))
        response = GradingResponse(success=False, error=str(e) or "AI grading failed")

    if not response.success:
        return _ai_error_result(question, reference_answer, response.error or "AI grading failed")

    score = min(1.0, max(0.0, response.score or 0.0))
    is_correct = bool(response.correct)
    return CheckResult(
        type=QuestionType.FREE_TEXT,
        is_correct=is_correct,
        earned_points=min(question.points, round_points(score * question.points)),
        max_points=question.points,
        free_text_result=FreeTextResult(
            is_correct=is_correct,
            score=score,
            feedback=response.feedback,
            reference_answer=reference_answer,
            graded_by_ai=True,
        ),
    )


@log_execution_time
async def resolve_pending_ai_grades(
    questions: Iterable[Union[BaseQuestion, Mapping[str, Any]]],
    user_answers: Mapping[str, UserAnswer],
    summary: ScoreSummary,
    provider: Union[AIProvider, str],
    *,
    api_key: Optional[str] = None,
    service: Optional[AIGradingService] = None,
    limiter: Optional[ProviderRateLimiter] = None,
    max_attempts: int = 1,
) -> ScoreSummary:
    """Replace pending free-text results with AI grades and recompute totals."""
    by_id: Dict[str, BaseQuestion] = {}
    for question in questions:
        question = parse_question(question)
        by_id[question.id] = question

    pending = [
        question_id for question_id in summary.pending_ai_question_ids
        if isinstance(by_id.get(question_id), FreeTextQuestion)
    ]
    if not pending:
        return summary

    graded = await asyncio.gather(*(
        grade_with_ai(
            by_id[question_id], user_answers.get(question_id), provider,
            api_key=api_key, service=service, limiter=limiter, max_attempts=max_attempts,
        )
        for question_id in pending
    ))

    results = dict(summary.results)
    results.update(zip(pending, graded))
    logger.info("ai_grades_resolved", count=len(pending))
    return summarize_results(results.items())


_grading_service: Optional[AIGradingService] = None


def get_grading_service() -> AIGradingService:
    """Get or create the grading service instance"""
    global _grading_service
    if _grading_service is None:
        _grading_service = AIGradingService()
    return _grading_service
