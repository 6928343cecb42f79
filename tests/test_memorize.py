import random

import pytest

from quiz_engine.core.memorize import (
    calculate_batch_results,
    calculate_overall_percentage,
    create_batches,
    format_percentage,
    get_completed_questions_count,
    get_correct_answer_display,
    get_correct_answer_for_result,
    get_score_color_class,
    get_total_questions_count,
    prepare_quiz_for_memorize,
)
from quiz_engine.schemas import (
    Chapter,
    FreeTextQuestion,
    MemorizeOptions,
    Quiz,
    ShuffleMode,
    TrueFalseQuestion,
)


def _ids(questions):
    return [q.id for q in questions]


def _flatten(batches):
    return [q for batch in batches for q in batch.questions]


class TestCreateBatches:
    def test_five_questions_batches_of_two(self, flat_quiz):
        questions = flat_quiz.questions[:5]
        batches = create_batches(questions, 2)
        assert [len(b.questions) for b in batches] == [2, 2, 1]
        assert _ids(_flatten(batches)) == _ids(questions)
        assert all(b.chapter_name is None for b in batches)

    @pytest.mark.parametrize("size", [1, 2, 3, 4, 6, 7, 100])
    def test_size_batching_is_a_partition(self, flat_quiz, size):
        batches = create_batches(flat_quiz.questions, size)
        assert _ids(_flatten(batches)) == _ids(flat_quiz.questions)
        assert all(len(b.questions) <= size for b in batches)

    def test_all_is_single_batch(self, flat_quiz):
        batches = create_batches(flat_quiz.questions, "all")
        assert len(batches) == 1
        assert len(batches[0].questions) == 7

    def test_non_positive_size_degrades_to_single_batch(self, flat_quiz):
        assert len(create_batches(flat_quiz.questions, 0)) == 1
        assert len(create_batches(flat_quiz.questions, -3)) == 1

    def test_chapters_scenario(self):
        quiz = Quiz(
            chapters=[Chapter(id="a", name="A"), Chapter(id="b", name="B")],
            questions=[
                TrueFalseQuestion(id="b1", correct=True, chapter="b"),
                TrueFalseQuestion(id="a1", correct=True, chapter="a"),
                TrueFalseQuestion(id="u1", correct=True),
                TrueFalseQuestion(id="a2", correct=True, chapter="a"),
                TrueFalseQuestion(id="b2", correct=True, chapter="b"),
                TrueFalseQuestion(id="a3", correct=True, chapter="a"),
            ],
        )
        batches = create_batches(quiz.questions, "chapters", quiz)
        assert [(b.chapter_name, _ids(b.questions)) for b in batches] == [
            ("A", ["a1", "a2", "a3"]),
            ("B", ["b1", "b2"]),
            ("Uncategorized", ["u1"]),
        ]

    def test_chapters_includes_orphans_and_skips_empty(self, chaptered_quiz):
        quiz = chaptered_quiz.model_copy(update={
            "chapters": chaptered_quiz.chapters + [Chapter(id="c4", name="Empty")],
        })
        batches = create_batches(quiz.questions, "chapters", quiz)
        assert [b.chapter_name for b in batches] == ["One", "Two", "Three", "Uncategorized"]
        assert _ids(batches[-1].questions) == ["free-q0", "orphan-q0"]
        assert sorted(_ids(_flatten(batches))) == sorted(_ids(quiz.questions))

    def test_chapters_without_chapter_data(self, flat_quiz):
        batches = create_batches(flat_quiz.questions, "chapters", flat_quiz)
        assert len(batches) == 1
        assert batches[0].chapter_name is None
        assert len(create_batches(flat_quiz.questions, "chapters")) == 1

    def test_empty_input_still_yields_a_batch(self, chaptered_quiz):
        assert len(create_batches([], 3)) == 1
        assert create_batches([], "chapters", chaptered_quiz)[0].questions == []


class TestPrepareQuiz:
    def test_selected_chapters_filter(self, chaptered_quiz):
        options = MemorizeOptions(selected_chapters=["c2"])
        prepared = prepare_quiz_for_memorize(chaptered_quiz, options)
        assert _ids(prepared.questions) == ["c2-q0", "c2-q1"]
        assert len(chaptered_quiz.questions) == 10

    def test_no_shuffle_keeps_order(self, chaptered_quiz):
        prepared = prepare_quiz_for_memorize(chaptered_quiz, MemorizeOptions())
        assert _ids(prepared.questions) == _ids(chaptered_quiz.questions)

    def test_shuffle_is_seeded(self, chaptered_quiz):
        options = MemorizeOptions(shuffle_mode=ShuffleMode.FULL)
        first = prepare_quiz_for_memorize(chaptered_quiz, options, random.Random(1))
        second = prepare_quiz_for_memorize(chaptered_quiz, options, random.Random(1))
        assert _ids(first.questions) == _ids(second.questions)
        assert sorted(_ids(first.questions)) == sorted(_ids(chaptered_quiz.questions))

    def test_shuffle_choices(self, multiple_answer, true_false):
        quiz = Quiz(questions=[multiple_answer, true_false])
        options = MemorizeOptions(shuffle_choices=True)
        expected = list(multiple_answer.choices)
        random.Random(4).shuffle(expected)
        prepared = prepare_quiz_for_memorize(quiz, options, random.Random(4))
        assert [c.id for c in prepared.questions[0].choices] == [c.id for c in expected]
        assert [c.id for c in multiple_answer.choices] == ["a", "b", "c", "d", "e"]
        assert prepared.questions[1] == true_false


class TestAnswerDisplay:
    def test_display_per_type(self, multiple_choice, multiple_answer, true_false, fill_blank,
                              dropdown, free_text, numeric, file_upload):
        assert get_correct_answer_display(multiple_choice) == "Paris"
        assert get_correct_answer_display(multiple_answer) == ["2", "3", "5"]
        assert get_correct_answer_display(true_false) == "True"
        assert get_correct_answer_display(fill_blank) == ["2", "water"]
        assert get_correct_answer_display(dropdown) == ["Alpha", "Beta", "Gamma"]
        assert get_correct_answer_display(free_text) == "Plants turning light into energy"
        assert get_correct_answer_display(numeric) == "9.81 ± 0.01 m/s²"
        assert get_correct_answer_display(file_upload) == "Graded manually"

    def test_display_fallbacks(self):
        assert get_correct_answer_display(FreeTextQuestion(id="f")) == "No reference answer"

    def test_result_shape(self, multiple_choice, multiple_answer, true_false, numeric):
        assert get_correct_answer_for_result(multiple_choice) == "a"
        assert get_correct_answer_for_result(multiple_answer) == ["a", "b", "d"]
        assert get_correct_answer_for_result(true_false) is True
        assert get_correct_answer_for_result(numeric) == 9.81


def test_calculate_batch_results(multiple_choice, fill_blank, true_false):
    result = calculate_batch_results(
        [multiple_choice, fill_blank, true_false],
        {"mc1": "a", "fb1": ["2", "oil"]},
        batch_index=2,
        chapter_name="Basics",
    )
    assert result.batch_index == 2
    assert result.chapter_name == "Basics"
    assert result.correct_count == 1
    assert result.total_questions == 3
    assert result.earned_points == 3
    assert result.total_points == 5
    assert result.percentage == 60
    by_id = {r.question_id: r for r in result.question_results}
    assert by_id["fb1"].earned_points == 1
    assert by_id["fb1"].blank_results[1].correct_answer == "water"
    assert by_id["tf1"].user_answer is None
    assert by_id["mc1"].question_text == "Capital of France?"


def test_progress_helpers(flat_quiz):
    batches = create_batches(flat_quiz.questions, 3)
    assert get_total_questions_count(batches) == 7
    first = calculate_batch_results(batches[0].questions, {"q0": "true", "q1": "false"}, 0)
    second = calculate_batch_results(batches[1].questions, {}, 1)
    assert get_completed_questions_count([first, second]) == 6
    # 2 of 6 points
    assert calculate_overall_percentage([first, second]) == 33
    assert calculate_overall_percentage([]) == 0


@pytest.mark.parametrize("percentage,expected", [(100, "success"), (70, "success"), (69.9, "warning"),
                                                 (50, "warning"), (49, "danger"), (0, "danger")])
def test_score_color_class(percentage, expected):
    assert get_score_color_class(percentage) == expected


def test_format_percentage():
    assert format_percentage(66.5) == "67%"
    assert format_percentage(0) == "0%"
