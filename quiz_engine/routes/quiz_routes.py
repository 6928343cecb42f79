import random

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from quiz_engine.core.check_answer import calculate_score, check_answer
from quiz_engine.core.exceptions import UnknownQuestionTypeError
from quiz_engine.core.logging import get_logger, grading_requests, metrics_logger
from quiz_engine.core.memorize import (
    calculate_batch_results,
    create_batches,
    prepare_quiz_for_memorize,
)
from quiz_engine.schemas import (
    BatchResult,
    BatchResultsRequest,
    CheckAnswerRequest,
    CheckResult,
    MemorizeBatchesRequest,
    MemorizeBatchesResponse,
    ScoreRequest,
    ScoreSummary,
    parse_question,
)


logger = get_logger(__name__)

router = APIRouter(tags=["quiz"])


def _reject(endpoint: str, status_code: int, detail: str):
    grading_requests.labels(endpoint=endpoint, status=str(status_code)).inc()
    logger.warning("Rejected grading payload", endpoint=endpoint, detail=detail)
    raise HTTPException(status_code=status_code, detail=detail)


@router.post("/quiz/check", response_model=CheckResult)
async def check(req: CheckAnswerRequest):
    """Grade one answer against its question"""
    try:
        result = check_answer(parse_question(req.question), req.answer)
    except UnknownQuestionTypeError as e:
        _reject("quiz_check", 400, e.message)
    except ValidationError as e:
        _reject("quiz_check", 422, str(e))

    grading_requests.labels(endpoint="quiz_check", status="200").inc()
    return result


@router.post("/quiz/score", response_model=ScoreSummary)
async def score(req: ScoreRequest):
    """Grade a full answer sheet"""
    try:
        summary = calculate_score(req.questions, req.answers)
    except UnknownQuestionTypeError as e:
        _reject("quiz_score", 400, e.message)
    except ValidationError as e:
        _reject("quiz_score", 422, str(e))

    grading_requests.labels(endpoint="quiz_score", status="200").inc()
    return summary


@router.post("/memorize/batches", response_model=MemorizeBatchesResponse)
async def memorize_batches(req: MemorizeBatchesRequest):
    """Prepare a quiz for memorize mode and split it into batches"""
    rng = random.Random(req.seed) if req.seed is not None else None
    prepared = prepare_quiz_for_memorize(req.quiz, req.options, rng)
    batches = create_batches(prepared.questions, req.options.batch_size, req.quiz)

    mode = req.options.batch_size if isinstance(req.options.batch_size, str) else "size"
    metrics_logger.log_batches_created(mode, len(batches), len(prepared.questions))
    grading_requests.labels(endpoint="memorize_batches", status="200").inc()
    return MemorizeBatchesResponse(questions=prepared.questions, batches=batches)


@router.post("/memorize/batch-results", response_model=BatchResult)
async def memorize_batch_results(req: BatchResultsRequest):
    """Score one memorize batch assessment"""
    try:
        questions = [parse_question(q) for q in req.questions]
    except UnknownQuestionTypeError as e:
        _reject("memorize_batch_results", 400, e.message)
    except ValidationError as e:
        _reject("memorize_batch_results", 422, str(e))

    result = calculate_batch_results(questions, req.answers, req.batch_index, req.chapter_name)
    grading_requests.labels(endpoint="memorize_batch_results", status="200").inc()
    return result
