"""
Shared question and quiz fixtures
"""
import random

import pytest

from quiz_engine.core.retry import ProviderRateLimiter
from quiz_engine.schemas import (
    Chapter,
    Choice,
    DropdownQuestion,
    FileUploadQuestion,
    FillBlankQuestion,
    FreeTextQuestion,
    MultipleAnswerQuestion,
    MultipleChoiceQuestion,
    NumericQuestion,
    Quiz,
    TrueFalseQuestion,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return ProviderRateLimiter(max_requests=10, window_seconds=60, clock=clock)


@pytest.fixture
def multiple_choice():
    return MultipleChoiceQuestion(
        id="mc1",
        text="Capital of France?",
        points=2,
        choices=[
            Choice(id="a", text="Paris", correct=True),
            Choice(id="b", text="Lyon"),
            Choice(id="c", text="Nice"),
        ],
    )


@pytest.fixture
def multiple_answer():
    return MultipleAnswerQuestion(
        id="ma1",
        text="Pick the primes",
        points=4,
        choices=[
            Choice(id="a", text="2", correct=True),
            Choice(id="b", text="3", correct=True),
            Choice(id="c", text="4"),
            Choice(id="d", text="5", correct=True),
            Choice(id="e", text="6"),
        ],
    )


@pytest.fixture
def true_false():
    return TrueFalseQuestion(id="tf1", text="The sky is blue", correct=True)


@pytest.fixture
def fill_blank():
    return FillBlankQuestion(id="fb1", text="H__O is ___", answers=["2", "water"], points=2)


@pytest.fixture
def dropdown():
    return DropdownQuestion(
        id="dd1",
        text="Pick [1] and [2]",
        points=3,
        choices=[
            Choice(id="x", text="  Alpha  "),
            Choice(id="y", text="Beta"),
            Choice(id="z", text="Gamma"),
        ],
        answers=["x", "y", "z"],
    )


@pytest.fixture
def free_text():
    return FreeTextQuestion(
        id="ft1",
        text="What is photosynthesis?",
        points=5,
        reference_answer="Plants turning light into energy",
        ai_grading_enabled=True,
    )


@pytest.fixture
def numeric():
    return NumericQuestion(id="num1", text="g?", correct_answer=9.81, tolerance=0.01, unit="m/s²")


@pytest.fixture
def file_upload():
    return FileUploadQuestion(id="fu1", text="Upload your essay", points=10)


@pytest.fixture
def chaptered_quiz():
    """Three chapters in list order c1, c2, c3 plus two uncategorized questions."""
    questions = []
    for chapter_id, count in (("c1", 3), ("c2", 2), ("c3", 3)):
        for i in range(count):
            questions.append(TrueFalseQuestion(id=f"{chapter_id}-q{i}", correct=True, chapter=chapter_id))
    questions.append(TrueFalseQuestion(id="free-q0", correct=False))
    questions.append(TrueFalseQuestion(id="orphan-q0", correct=False, chapter="deleted"))
    return Quiz(
        id="quiz1",
        title="Chaptered",
        chapters=[
            Chapter(id="c1", name="One"),
            Chapter(id="c2", name="Two"),
            Chapter(id="c3", name="Three"),
        ],
        questions=questions,
    )


@pytest.fixture
def flat_quiz():
    return Quiz(
        id="quiz2",
        title="Flat",
        questions=[TrueFalseQuestion(id=f"q{i}", correct=i % 2 == 0) for i in range(7)],
    )
