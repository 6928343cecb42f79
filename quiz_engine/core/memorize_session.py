"""
Memorize session: walks a learner through batches, scoring each assessment
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from quiz_engine.core.chapters import RandomSource
from quiz_engine.core.exceptions import SessionStateError
from quiz_engine.core.logging import get_logger, metrics_logger
from quiz_engine.core.memorize import (
    calculate_batch_results,
    calculate_overall_percentage,
    create_batches,
    prepare_quiz_for_memorize,
)
from quiz_engine.schemas import (
    BaseQuestion,
    BatchInfo,
    BatchResult,
    CumulativeResults,
    MemorizeOptions,
    Quiz,
    UserAnswer,
)


logger = get_logger(__name__)


class MemorizePhase(str, Enum):
    MEMORIZING = "memorizing"
    ASSESSING = "assessing"
    BATCH_RESULTS = "batch-results"
    SUMMARY = "summary"


class MemorizeSession:
    """State of one review session over a prepared quiz."""

    def __init__(self, quiz: Quiz, prepared_quiz: Quiz, batches: List[BatchInfo],
                 options: MemorizeOptions):
        self.original_quiz = quiz
        self.prepared_quiz = prepared_quiz
        self.batches = batches
        self.options = options
        self.phase = MemorizePhase.MEMORIZING
        self.current_batch_index = 0
        self.batch_results: List[BatchResult] = []
        self.cumulative = CumulativeResults()
        self.assessment_answers: Dict[str, UserAnswer] = {}

    @classmethod
    def start(cls, quiz: Quiz, options: Optional[MemorizeOptions] = None,
              rng: Optional[RandomSource] = None) -> "MemorizeSession":
        options = options or MemorizeOptions()
        prepared = prepare_quiz_for_memorize(quiz, options, rng)
        batches = create_batches(prepared.questions, options.batch_size, quiz)
        mode = "chapters" if options.batch_size == "chapters" else (
            "all" if options.batch_size == "all" else "size"
        )
        metrics_logger.log_batches_created(mode, len(batches), len(prepared.questions))
        return cls(quiz, prepared, batches, options)

    def _require(self, *phases: MemorizePhase) -> None:
        if self.phase not in phases:
            raise SessionStateError(
                f"Action not allowed in phase '{self.phase.value}'",
                {"phase": self.phase.value, "allowed": [p.value for p in phases]}
            )

    @property
    def total_batches(self) -> int:
        return len(self.batches)

    @property
    def current_batch(self) -> List[BaseQuestion]:
        if self.current_batch_index >= len(self.batches):
            return []
        return self.batches[self.current_batch_index].questions

    @property
    def current_chapter_name(self) -> Optional[str]:
        if self.current_batch_index >= len(self.batches):
            return None
        return self.batches[self.current_batch_index].chapter_name

    @property
    def is_last_batch(self) -> bool:
        return self.current_batch_index >= len(self.batches) - 1

    @property
    def total_questions(self) -> int:
        return sum(len(batch.questions) for batch in self.batches)

    @property
    def completed_batches(self) -> int:
        return len(self.batch_results)

    @property
    def completed_questions(self) -> int:
        return self.cumulative.total_questions

    @property
    def overall_percentage(self) -> int:
        return calculate_overall_percentage(self.batch_results)

    def start_assessment(self) -> None:
        self._require(MemorizePhase.MEMORIZING)
        self.phase = MemorizePhase.ASSESSING
        self.assessment_answers = {}

    def select_answer(self, question_id: str, answer: UserAnswer) -> None:
        self._require(MemorizePhase.ASSESSING)
        self.assessment_answers[question_id] = answer

    def submit_assessment(self) -> BatchResult:
        self._require(MemorizePhase.ASSESSING)
        result = calculate_batch_results(
            self.current_batch,
            self.assessment_answers,
            self.current_batch_index,
            self.current_chapter_name,
        )
        self.batch_results.append(result)
        self.cumulative = self.cumulative.add(result)
        self.phase = MemorizePhase.BATCH_RESULTS
        logger.info("memorize_batch_completed",
                    batch_index=self.current_batch_index,
                    percentage=result.percentage)
        return result

    def retry_batch(self) -> None:
        """Discard the last batch result and study the same batch again."""
        self._require(MemorizePhase.BATCH_RESULTS)
        if self.batch_results:
            last = self.batch_results.pop()
            self.cumulative = self.cumulative.subtract(last)
        self.phase = MemorizePhase.MEMORIZING
        self.assessment_answers = {}

    def continue_to_next_batch(self) -> None:
        self._require(MemorizePhase.BATCH_RESULTS)
        if self.is_last_batch:
            raise SessionStateError("No batch left; finish the session instead",
                                    {"batch_index": self.current_batch_index})
        self.current_batch_index += 1
        self.phase = MemorizePhase.MEMORIZING
        self.assessment_answers = {}

    def finish(self) -> CumulativeResults:
        self._require(MemorizePhase.BATCH_RESULTS, MemorizePhase.MEMORIZING)
        self.phase = MemorizePhase.SUMMARY
        logger.info("memorize_session_finished",
                    batches=self.completed_batches,
                    percentage=self.overall_percentage)
        return self.cumulative
