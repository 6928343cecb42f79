"""
Chapter utilities and chapter-aware shuffling
"""
from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Sequence, TypeVar, Union
import random
import string
import time

from quiz_engine.core.logging import get_logger
from quiz_engine.schemas import BaseQuestion, Chapter, Quiz, ShuffleMode


logger = get_logger(__name__)

T = TypeVar("T")

# Group key for questions without a (valid) chapter reference
UNCATEGORIZED = "uncategorized"

_ID_ALPHABET = string.digits + string.ascii_lowercase


class RandomSource(Protocol):
    def shuffle(self, x: List) -> None: ...


def _chapters(quiz: Optional[Quiz]) -> List[Chapter]:
    if quiz is None or not quiz.chapters:
        return []
    return list(quiz.chapters)


def has_multiple_chapters(quiz: Optional[Quiz]) -> bool:
    """Chapter-aware behaviour only applies with two or more chapters."""
    return len(_chapters(quiz)) >= 2


def get_chapter_by_id(quiz: Optional[Quiz], chapter_id: Optional[str]) -> Optional[Chapter]:
    if not chapter_id:
        return None
    for chapter in _chapters(quiz):
        if chapter.id == chapter_id:
            return chapter
    return None


def get_chapter_name(quiz: Optional[Quiz], chapter_id: Optional[str]) -> Optional[str]:
    chapter = get_chapter_by_id(quiz, chapter_id)
    return chapter.name if chapter else None


def chapter_key(question: BaseQuestion, valid_ids: set) -> str:
    if question.chapter and question.chapter in valid_ids:
        return question.chapter
    return UNCATEGORIZED


def group_questions_by_chapter(
    questions: Sequence[BaseQuestion],
    quiz: Optional[Quiz],
) -> Dict[str, List[BaseQuestion]]:
    """Group questions by chapter id, keeping input order inside each group.

    Questions without a chapter, or naming a chapter the quiz no longer has,
    land in the UNCATEGORIZED group.
    """
    valid_ids = {chapter.id for chapter in _chapters(quiz)}
    groups: Dict[str, List[BaseQuestion]] = {}
    for question in questions:
        groups.setdefault(chapter_key(question, valid_ids), []).append(question)
    return groups


def get_questions_for_chapter(quiz: Quiz, chapter_id: str) -> List[BaseQuestion]:
    return [q for q in quiz.questions if q.chapter == chapter_id]


def count_questions_by_chapter(quiz: Quiz) -> Dict[str, int]:
    return {
        chapter_id: len(questions)
        for chapter_id, questions in group_questions_by_chapter(quiz.questions, quiz).items()
    }


def shuffle_list(items: Sequence[T], rng: Optional[RandomSource] = None) -> List[T]:
    """Return a uniformly shuffled copy (Fisher-Yates via ``rng.shuffle``)."""
    shuffled = list(items)
    (rng or random).shuffle(shuffled)
    return shuffled


def shuffle_with_chapters(
    questions: Sequence[BaseQuestion],
    quiz: Optional[Quiz],
    mode: Union[ShuffleMode, str],
    rng: Optional[RandomSource] = None,
) -> List[BaseQuestion]:
    """Reorder questions according to ``mode``; the input is never mutated.

    - none: original order
    - full: shuffle everything, ignoring chapters
    - within-chapters: keep chapter order, shuffle inside each chapter
    - chapters-only: shuffle chapter order, keep order inside chapters
    - both: shuffle chapter order and inside each chapter

    Chapter-aware modes fall back to ``full`` when the quiz has fewer than two
    chapters. Uncategorized questions always come last.
    """
    mode = ShuffleMode(mode)

    if mode == ShuffleMode.NONE:
        return list(questions)

    if mode == ShuffleMode.FULL or not has_multiple_chapters(quiz):
        return shuffle_list(questions, rng)

    groups = group_questions_by_chapter(questions, quiz)
    chapter_order = [chapter.id for chapter in _chapters(quiz) if groups.get(chapter.id)]

    if mode in (ShuffleMode.CHAPTERS_ONLY, ShuffleMode.BOTH):
        chapter_order = shuffle_list(chapter_order, rng)
    if groups.get(UNCATEGORIZED):
        chapter_order.append(UNCATEGORIZED)

    shuffle_within = mode in (ShuffleMode.WITHIN_CHAPTERS, ShuffleMode.BOTH)
    result: List[BaseQuestion] = []
    for chapter_id in chapter_order:
        chapter_questions = groups[chapter_id]
        if shuffle_within:
            chapter_questions = shuffle_list(chapter_questions, rng)
        result.extend(chapter_questions)

    logger.debug("questions_shuffled", mode=mode.value, count=len(result), chapters=len(chapter_order))
    return result


def generate_chapter_id() -> str:
    millis = int(time.time() * 1000)
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(7))
    return f"ch_{millis}_{suffix}"


def create_chapter(name: str) -> Chapter:
    return Chapter(id=generate_chapter_id(), name=name.strip())


def validate_chapter_references(quiz: Quiz) -> List[BaseQuestion]:
    """Return the quiz questions with orphaned chapter references cleared."""
    valid_ids = {chapter.id for chapter in _chapters(quiz)}
    cleaned = []
    for question in quiz.questions:
        if question.chapter and question.chapter not in valid_ids:
            question = question.model_copy(update={"chapter": None})
        cleaned.append(question)
    return cleaned


def get_chapters_with_questions(quiz: Quiz) -> List[Chapter]:
    counts = count_questions_by_chapter(quiz)
    return [chapter for chapter in _chapters(quiz) if counts.get(chapter.id, 0) > 0]


def can_delete_chapter(quiz: Quiz, chapter_id: str) -> bool:
    return not any(q.chapter == chapter_id for q in quiz.questions)


def get_question_chapter_display(quiz: Quiz, question: BaseQuestion) -> Optional[Dict[str, str]]:
    """Chapter label for a question, or None when chapters are not shown."""
    if not has_multiple_chapters(quiz) or not question.chapter:
        return None
    chapter = get_chapter_by_id(quiz, question.chapter)
    if chapter is None:
        return None
    return {"id": chapter.id, "name": chapter.name}
