"""
Answer checking and score aggregation for authored quiz questions
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
import math
import re

from quiz_engine.core.exceptions import ConfigurationError, UnknownQuestionTypeError
from quiz_engine.core.logging import get_logger, log_execution_time
from quiz_engine.schemas import (
    BaseQuestion,
    BlankResult,
    CheckResult,
    ChoiceState,
    DropdownQuestion,
    DropdownResult,
    FileUploadQuestion,
    FileUploadResult,
    FillBlankQuestion,
    FreeTextQuestion,
    FreeTextResult,
    MultipleAnswerQuestion,
    MultipleChoiceQuestion,
    NumericQuestion,
    QuestionType,
    ScoreSummary,
    TrueFalseQuestion,
    TrueFalseResult,
    UserAnswer,
    parse_question,
)
from quiz_engine.utils.rich_text import get_plain_text


logger = get_logger(__name__)


# Relative to the tolerance; absorbs float artefacts such as 3.2 - 3.1 > 0.1
FLOAT_TOLERANCE_SLACK = 1e-9

_LEADING_NUMBER_RE = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

FILL_BLANK_TOLERANCES = {"off": 0.0, "0.1": 0.1, "1": 1.0}

TRUE_FALSE_VALUES = {"true": True, "false": False}


def round_points(value: float) -> float:
    """Round half-up to two decimals."""
    return math.floor(value * 100 + 0.5) / 100


def round_percentage(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_answer(answer: str) -> str:
    return answer.strip().lower()


def parse_number(text: Any) -> Optional[float]:
    if not isinstance(text, str):
        return None
    # Trailing text such as a unit is ignored
    match = _LEADING_NUMBER_RE.match(text)
    if match is None:
        return None
    value = float(match.group(0))
    return value if math.isfinite(value) else None


def within_tolerance(user_value: float, correct_value: float, tolerance: float) -> bool:
    if tolerance <= 0:
        return user_value == correct_value
    return abs(user_value - correct_value) <= tolerance * (1 + FLOAT_TOLERANCE_SLACK)


def _answer_text(user_answer: UserAnswer) -> str:
    return user_answer if isinstance(user_answer, str) else ""


def _answer_slots(user_answer: UserAnswer) -> List[str]:
    if not isinstance(user_answer, list):
        return []
    return [value if isinstance(value, str) else "" for value in user_answer]


def _slot(values: List[str], index: int) -> str:
    return values[index] if index < len(values) else ""


def _partial_credit(matched: int, total: int, points: float) -> float:
    if total <= 0:
        return 0.0
    return min(points, max(0.0, round_points(matched / total * points)))


def _check_multiple_choice(question: MultipleChoiceQuestion, user_answer: UserAnswer) -> CheckResult:
    selected_id = user_answer if isinstance(user_answer, str) else None
    choice_states: Dict[str, ChoiceState] = {}
    is_correct = False

    for choice in question.choices:
        if choice.correct:
            choice_states[choice.id] = ChoiceState.CORRECT
            if selected_id == choice.id:
                is_correct = True
        elif selected_id == choice.id:
            choice_states[choice.id] = ChoiceState.INCORRECT

    return CheckResult(
        type=QuestionType.MULTIPLE_CHOICE,
        is_correct=is_correct,
        earned_points=question.points if is_correct else 0,
        max_points=question.points,
        choice_states=choice_states,
    )


def _check_multiple_answer(question: MultipleAnswerQuestion, user_answer: UserAnswer) -> CheckResult:
    selected_ids = set(_answer_slots(user_answer))
    choice_states: Dict[str, ChoiceState] = {}
    total_correct = 0
    correct_selected = 0
    incorrect_selected = 0

    for choice in question.choices:
        is_selected = choice.id in selected_ids
        if choice.correct:
            total_correct += 1
            # Missed correct answers are highlighted too
            choice_states[choice.id] = ChoiceState.CORRECT
            if is_selected:
                correct_selected += 1
        elif is_selected:
            choice_states[choice.id] = ChoiceState.INCORRECT
            incorrect_selected += 1

    # max(0, (correct - incorrect) / total_correct) * points
    earned = _partial_credit(correct_selected - incorrect_selected, total_correct, question.points)
    is_correct = total_correct > 0 and correct_selected == total_correct and incorrect_selected == 0

    return CheckResult(
        type=QuestionType.MULTIPLE_ANSWER,
        is_correct=is_correct,
        earned_points=earned,
        max_points=question.points,
        choice_states=choice_states,
    )


def _check_true_false(question: TrueFalseQuestion, user_answer: UserAnswer) -> CheckResult:
    normalized = normalize_answer(_answer_text(user_answer))
    user_value = TRUE_FALSE_VALUES.get(normalized)
    is_correct = user_value is not None and user_value == question.correct

    return CheckResult(
        type=QuestionType.TRUE_FALSE,
        is_correct=is_correct,
        earned_points=question.points if is_correct else 0,
        max_points=question.points,
        true_false_result=TrueFalseResult(is_correct=is_correct, correct_answer=question.correct),
    )


def _blank_matches(question: FillBlankQuestion, user_value: str, correct_value: str) -> bool:
    if question.numeric and question.tolerance and question.tolerance != "off":
        user_num = parse_number(user_value)
        correct_num = parse_number(correct_value)
        if user_num is None or correct_num is None:
            return normalize_answer(user_value) == normalize_answer(correct_value)
        return within_tolerance(user_num, correct_num, FILL_BLANK_TOLERANCES[question.tolerance])
    if question.case_sensitive:
        return user_value.strip() == correct_value.strip()
    return normalize_answer(user_value) == normalize_answer(correct_value)


def _check_fill_blank(question: FillBlankQuestion, user_answer: UserAnswer) -> CheckResult:
    user_values = _answer_slots(user_answer)
    blank_results: List[BlankResult] = []
    matched = 0

    for index, correct_value in enumerate(question.answers):
        user_value = _slot(user_values, index)
        is_blank_correct = _blank_matches(question, user_value, correct_value)
        if is_blank_correct:
            matched += 1
        blank_results.append(BlankResult(
            user_answer=user_value,
            correct_answer=correct_value,
            is_correct=is_blank_correct,
        ))

    total = len(question.answers)
    return CheckResult(
        type=QuestionType.FILL_BLANK,
        is_correct=total > 0 and matched == total,
        earned_points=_partial_credit(matched, total, question.points),
        max_points=question.points,
        blank_results=blank_results,
    )


def _check_dropdown(question: DropdownQuestion, user_answer: UserAnswer) -> CheckResult:
    user_values = _answer_slots(user_answer)
    choice_text = {choice.id: get_plain_text(choice.text).strip() for choice in question.choices}
    dropdown_results: List[DropdownResult] = []
    matched = 0

    for index, correct_choice_id in enumerate(question.answers):
        user_value = _slot(user_values, index)
        # Slots hold choice ids, compared verbatim
        is_slot_correct = user_value == correct_choice_id
        if is_slot_correct:
            matched += 1
        dropdown_results.append(DropdownResult(
            user_answer=user_value,
            correct_answer=choice_text.get(correct_choice_id) or correct_choice_id,
            is_correct=is_slot_correct,
        ))

    total = len(question.answers)
    return CheckResult(
        type=QuestionType.DROPDOWN,
        is_correct=total > 0 and matched == total,
        earned_points=_partial_credit(matched, total, question.points),
        max_points=question.points,
        dropdown_results=dropdown_results,
    )


def _free_text_result(question: FreeTextQuestion, is_correct: bool, **details: Any) -> CheckResult:
    return CheckResult(
        type=QuestionType.FREE_TEXT,
        is_correct=is_correct,
        earned_points=question.points if is_correct else 0,
        max_points=question.points,
        free_text_result=FreeTextResult(is_correct=is_correct, **details),
    )


def _check_free_text(question: FreeTextQuestion, user_answer: UserAnswer) -> CheckResult:
    user_text = _answer_text(user_answer).strip()
    reference = get_plain_text(question.reference_answer).strip()
    reference_answer = reference or None

    if not user_text:
        return _free_text_result(question, False, reference_answer=reference_answer)

    if reference and user_text.lower() == reference.lower():
        return _free_text_result(question, True, score=1.0, reference_answer=reference)

    if question.ai_grading_enabled:
        # Caller resolves this through the AI grading bridge
        return _free_text_result(
            question, False, reference_answer=reference_answer, pending_ai_grade=True
        )

    return _free_text_result(question, False, reference_answer=reference_answer)


def _check_numeric(question: NumericQuestion, user_answer: UserAnswer) -> CheckResult:
    user_value = parse_number(_answer_text(user_answer))
    tolerance = question.tolerance or 0.0
    is_correct = user_value is not None and within_tolerance(
        user_value, question.correct_answer, tolerance
    )

    return CheckResult(
        type=QuestionType.NUMERIC,
        is_correct=is_correct,
        earned_points=question.points if is_correct else 0,
        max_points=question.points,
    )


def _check_file_upload(question: FileUploadQuestion, user_answer: UserAnswer) -> CheckResult:
    filename = user_answer if isinstance(user_answer, str) and user_answer else None

    return CheckResult(
        type=QuestionType.FILE_UPLOAD,
        is_correct=False,
        earned_points=0,
        max_points=question.points,
        file_upload_result=FileUploadResult(
            has_upload=bool(user_answer),
            filename=filename,
            pending_manual_grade=True,
        ),
    )


_CHECKERS: Dict[QuestionType, Callable[[Any, UserAnswer], CheckResult]] = {
    QuestionType.MULTIPLE_CHOICE: _check_multiple_choice,
    QuestionType.MULTIPLE_ANSWER: _check_multiple_answer,
    QuestionType.TRUE_FALSE: _check_true_false,
    QuestionType.FILL_BLANK: _check_fill_blank,
    QuestionType.DROPDOWN: _check_dropdown,
    QuestionType.FREE_TEXT: _check_free_text,
    QuestionType.NUMERIC: _check_numeric,
    QuestionType.FILE_UPLOAD: _check_file_upload,
}

_unhandled = [t.value for t in QuestionType if t not in _CHECKERS]
if _unhandled:
    raise ConfigurationError("Answer checkers missing for question types", {"types": _unhandled})


def check_answer(question: Union[BaseQuestion, Mapping[str, Any]], user_answer: UserAnswer) -> CheckResult:
    """Grade a single answer.

    Malformed or missing answers grade as incorrect; the only error raised is
    UnknownQuestionTypeError for a discriminant outside QuestionType.
    """
    if isinstance(question, Mapping):
        question = parse_question(question)

    question_type = getattr(question, "type", None)
    try:
        checker = _CHECKERS[QuestionType(question_type)]
    except ValueError:
        logger.error("unknown_question_type",
                     question_type=str(question_type),
                     question_id=getattr(question, "id", None))
        raise UnknownQuestionTypeError(question_type)

    return checker(question, user_answer)


@log_execution_time
def calculate_score(
    questions: Iterable[Union[BaseQuestion, Mapping[str, Any]]],
    user_answers: Optional[Mapping[str, UserAnswer]] = None,
) -> ScoreSummary:
    """Grade every question and fold the results into quiz totals."""
    answers = user_answers or {}
    graded = []

    for question in questions:
        question = parse_question(question)
        graded.append((question.id, check_answer(question, answers.get(question.id))))

    return summarize_results(graded)


def summarize_results(graded: Iterable[Tuple[str, CheckResult]]) -> ScoreSummary:
    """Aggregate (question id, result) pairs, in order, into a ScoreSummary."""
    results: Dict[str, CheckResult] = {}
    correct_count = 0
    earned_points = 0.0
    total_points = 0.0
    total_questions = 0

    for question_id, result in graded:
        results[question_id] = result
        total_questions += 1
        total_points += result.max_points
        earned_points += result.earned_points
        if result.is_correct:
            correct_count += 1

    earned_points = round_points(earned_points)
    total_points = round_points(total_points)
    percentage = round_percentage(earned_points / total_points * 100) if total_points > 0 else 0

    return ScoreSummary(
        correct_count=correct_count,
        total_questions=total_questions,
        earned_points=earned_points,
        total_points=total_points,
        percentage=percentage,
        results=results,
    )
