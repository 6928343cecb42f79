"""
Batch sequencing and result helpers for memorize (review) mode
"""
from __future__ import annotations

from typing import List, Mapping, Optional, Sequence, Union

from quiz_engine.config import settings
from quiz_engine.core.chapters import (
    UNCATEGORIZED,
    RandomSource,
    group_questions_by_chapter,
    shuffle_list,
    shuffle_with_chapters,
)
from quiz_engine.core.check_answer import (
    calculate_score,
    round_percentage,
    round_points,
)
from quiz_engine.core.exceptions import UnknownQuestionTypeError
from quiz_engine.core.logging import get_logger
from quiz_engine.schemas import (
    CHOICE_QUESTION_TYPES,
    BaseQuestion,
    BatchInfo,
    BatchResult,
    BatchSize,
    DropdownQuestion,
    FileUploadQuestion,
    FillBlankQuestion,
    FreeTextQuestion,
    MemorizeOptions,
    MultipleAnswerQuestion,
    MultipleChoiceQuestion,
    NumericQuestion,
    QuestionResult,
    Quiz,
    ShuffleMode,
    TrueFalseQuestion,
    UserAnswer,
)
from quiz_engine.utils.rich_text import get_plain_text


logger = get_logger(__name__)


def create_batches(
    questions: Sequence[BaseQuestion],
    batch_size: BatchSize,
    quiz: Optional[Quiz] = None,
) -> List[BatchInfo]:
    """Partition questions into presentation batches without reordering them.

    ``batch_size`` is a positive int (contiguous slices), ``"all"`` (one
    batch) or ``"chapters"`` (one batch per chapter in chapter-list order,
    then a trailing uncategorized batch). Always returns at least one batch.
    """
    questions = list(questions)

    if batch_size == "chapters":
        if quiz is None or not quiz.chapters:
            return [BatchInfo(questions=questions)]

        groups = group_questions_by_chapter(questions, quiz)
        batches = [
            BatchInfo(questions=groups[chapter.id], chapter_name=chapter.name)
            for chapter in quiz.chapters
            if groups.get(chapter.id)
        ]
        if groups.get(UNCATEGORIZED):
            batches.append(BatchInfo(
                questions=groups[UNCATEGORIZED],
                chapter_name=settings.uncategorized_label,
            ))
        return batches or [BatchInfo(questions=questions)]

    if batch_size == "all" or not isinstance(batch_size, int) or batch_size < 1:
        if batch_size != "all":
            logger.warning("invalid_batch_size", batch_size=str(batch_size))
        return [BatchInfo(questions=questions)]

    if len(questions) <= batch_size:
        return [BatchInfo(questions=questions)]

    return [
        BatchInfo(questions=questions[start:start + batch_size])
        for start in range(0, len(questions), batch_size)
    ]


def prepare_quiz_for_memorize(
    quiz: Quiz,
    options: MemorizeOptions,
    rng: Optional[RandomSource] = None,
) -> Quiz:
    """Apply chapter filtering, question shuffling and choice shuffling."""
    questions: List[BaseQuestion] = list(quiz.questions)

    if options.selected_chapters:
        selected = set(options.selected_chapters)
        questions = [q for q in questions if q.chapter and q.chapter in selected]

    if options.shuffle_mode != ShuffleMode.NONE:
        questions = shuffle_with_chapters(questions, quiz, options.shuffle_mode, rng)

    if options.shuffle_choices:
        questions = [
            q.model_copy(update={"choices": shuffle_list(q.choices, rng)})
            if isinstance(q, CHOICE_QUESTION_TYPES) else q
            for q in questions
        ]

    return quiz.model_copy(update={"questions": questions})


def _choice_text(question, choice_id: str) -> str:
    for choice in question.choices:
        if choice.id == choice_id:
            return get_plain_text(choice.text).strip()
    return choice_id


def get_correct_answer_display(question: BaseQuestion) -> Union[str, List[str]]:
    """Human readable answer key for review screens."""
    if isinstance(question, MultipleChoiceQuestion):
        correct = next((c for c in question.choices if c.correct), None)
        return get_plain_text(correct.text).strip() if correct else "No correct answer"

    if isinstance(question, MultipleAnswerQuestion):
        texts = [get_plain_text(c.text).strip() for c in question.choices if c.correct]
        return texts or ["No correct answers"]

    if isinstance(question, TrueFalseQuestion):
        return "True" if question.correct else "False"

    if isinstance(question, FillBlankQuestion):
        return list(question.answers)

    if isinstance(question, DropdownQuestion):
        return [_choice_text(question, answer_id) for answer_id in question.answers]

    if isinstance(question, FreeTextQuestion):
        return get_plain_text(question.reference_answer).strip() or "No reference answer"

    if isinstance(question, NumericQuestion):
        display = f"{question.correct_answer:g}"
        if question.tolerance:
            display += f" ± {question.tolerance:g}"
        if question.unit:
            display += f" {question.unit}"
        return display

    if isinstance(question, FileUploadQuestion):
        return "Graded manually"

    raise UnknownQuestionTypeError(getattr(question, "type", None))


def get_correct_answer_for_result(question: BaseQuestion) -> Union[bool, float, str, List[str]]:
    """Answer key in answer shape (choice ids, slot values, booleans)."""
    if isinstance(question, MultipleChoiceQuestion):
        correct = next((c for c in question.choices if c.correct), None)
        return correct.id if correct else ""
    if isinstance(question, MultipleAnswerQuestion):
        return [c.id for c in question.choices if c.correct]
    if isinstance(question, TrueFalseQuestion):
        return question.correct
    if isinstance(question, (FillBlankQuestion, DropdownQuestion)):
        return list(question.answers)
    if isinstance(question, FreeTextQuestion):
        return get_plain_text(question.reference_answer).strip()
    if isinstance(question, NumericQuestion):
        return question.correct_answer
    if isinstance(question, FileUploadQuestion):
        return ""
    raise UnknownQuestionTypeError(getattr(question, "type", None))


def calculate_batch_results(
    questions: Sequence[BaseQuestion],
    user_answers: Mapping[str, UserAnswer],
    batch_index: int,
    chapter_name: Optional[str] = None,
) -> BatchResult:
    summary = calculate_score(questions, user_answers)

    question_results = []
    for question in questions:
        result = summary.results[question.id]
        question_results.append(QuestionResult(
            question_id=question.id,
            question_text=get_plain_text(question.text).strip(),
            type=question.type,
            user_answer=user_answers.get(question.id),
            points=result.max_points,
            earned_points=result.earned_points,
            is_correct=result.is_correct,
            correct_answer=get_correct_answer_for_result(question),
            blank_results=result.blank_results,
        ))

    return BatchResult(
        batch_index=batch_index,
        correct_count=summary.correct_count,
        total_questions=summary.total_questions,
        earned_points=summary.earned_points,
        total_points=summary.total_points,
        percentage=summary.percentage,
        question_results=question_results,
        chapter_name=chapter_name,
    )


def get_score_color_class(percentage: float) -> str:
    if percentage >= 70:
        return "success"
    if percentage >= 50:
        return "warning"
    return "danger"


def format_percentage(percentage: float) -> str:
    return f"{round_percentage(percentage)}%"


def get_total_questions_count(batches: Sequence[BatchInfo]) -> int:
    return sum(len(batch.questions) for batch in batches)


def get_completed_questions_count(batch_results: Sequence[BatchResult]) -> int:
    return sum(result.total_questions for result in batch_results)


def calculate_overall_percentage(batch_results: Sequence[BatchResult]) -> int:
    if not batch_results:
        return 0
    earned = round_points(sum(r.earned_points for r in batch_results))
    total = round_points(sum(r.total_points for r in batch_results))
    return round_percentage(earned / total * 100) if total > 0 else 0
