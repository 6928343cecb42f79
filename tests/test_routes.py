import pytest
from fastapi.testclient import TestClient

from quiz_engine.config import settings
from quiz_engine.core.ai_grading import AIGradingService, GradingProvider, get_grading_service
from quiz_engine.core.retry import get_rate_limiter
from quiz_engine.main import app
from quiz_engine.schemas import AIProvider, GradingResponse


class StubProvider(GradingProvider):
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = 0

    async def grade(self, request):
        self.calls += 1
        if self.error:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def no_configured_keys(monkeypatch):
    for provider in AIProvider:
        monkeypatch.setattr(settings, f"{provider.value}_api_key", None)


@pytest.fixture
def stub_provider():
    return StubProvider(GradingResponse(success=True, correct=True, score=0.75, feedback="Solid"))


@pytest.fixture
def client(stub_provider, limiter):
    app.dependency_overrides[get_grading_service] = lambda: AIGradingService(
        provider_factory=lambda provider, api_key: stub_provider
    )
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    yield TestClient(app)
    app.dependency_overrides.clear()


MC_QUESTION = {
    "id": "mc",
    "type": "multiple_choice",
    "points": 2,
    "choices": [{"id": "a", "text": "A", "correct": True}, {"id": "b", "text": "B"}],
}

GRADE_BODY = {
    "provider": "gemini",
    "question_text": "Define entropy",
    "user_answer": "Disorder",
    "points": 4,
    "api_key": "user-key",
}


def test_health_and_root(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/").json()["service"] == "Quiz Engine"


def test_request_id_header(client):
    response = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert response.headers["X-Request-ID"] == "abc-123"
    assert "X-Process-Time" in response.headers


def test_check_answer(client):
    response = client.post("/quiz/check", json={"question": MC_QUESTION, "answer": "b"})
    assert response.status_code == 200
    body = response.json()
    assert body["is_correct"] is False
    assert body["earned_points"] == 0
    assert body["max_points"] == 2
    assert body["choice_states"] == {"a": "correct", "b": "incorrect"}


def test_check_unknown_type(client):
    response = client.post("/quiz/check", json={"question": {"id": "q", "type": "essay"}, "answer": "x"})
    assert response.status_code == 400
    assert "essay" in response.json()["detail"]


def test_check_malformed_question(client):
    response = client.post("/quiz/check", json={"question": {"id": "q", "type": "numeric"}, "answer": "1"})
    assert response.status_code == 422


def test_score(client):
    response = client.post("/quiz/score", json={
        "questions": [
            MC_QUESTION,
            {"id": "fb", "type": "fill_blank", "answers": ["x", "y"], "points": 2},
        ],
        "answers": {"mc": "a", "fb": ["x", "z"]},
    })
    assert response.status_code == 200
    body = response.json()
    assert body["earned_points"] == 3
    assert body["total_points"] == 4
    assert body["percentage"] == 75
    assert body["correct_count"] == 1


def test_score_grades_odd_answer_shapes_as_unanswered(client):
    response = client.post("/quiz/score", json={
        "questions": [
            {"id": "n", "type": "numeric", "correct_answer": 10},
            {"id": "t", "type": "true_false", "correct": True},
        ],
        "answers": {"n": 10, "t": "true"},
    })
    assert response.status_code == 200
    body = response.json()
    assert body["results"]["n"]["is_correct"] is False
    assert body["results"]["t"]["is_correct"] is True
    assert body["correct_count"] == 1


def test_check_non_string_answer(client):
    response = client.post("/quiz/check", json={"question": MC_QUESTION, "answer": 5})
    assert response.status_code == 200
    assert response.json()["is_correct"] is False


def test_memorize_batches_by_chapter(client):
    quiz = {
        "id": "q",
        "chapters": [{"id": "a", "name": "A"}, {"id": "b", "name": "B"}],
        "questions": [
            {"id": "a1", "type": "true_false", "correct": True, "chapter": "a"},
            {"id": "b1", "type": "true_false", "correct": True, "chapter": "b"},
            {"id": "u1", "type": "true_false", "correct": False},
            {"id": "a2", "type": "true_false", "correct": True, "chapter": "a"},
        ],
    }
    response = client.post("/memorize/batches", json={"quiz": quiz, "options": {"batch_size": "chapters"}})
    assert response.status_code == 200
    batches = response.json()["batches"]
    assert [b["chapter_name"] for b in batches] == ["A", "B", "Uncategorized"]
    assert [[q["id"] for q in b["questions"]] for b in batches] == [["a1", "a2"], ["b1"], ["u1"]]


def test_memorize_batches_seeded_shuffle(client):
    quiz = {"questions": [{"id": f"q{i}", "type": "true_false", "correct": True} for i in range(8)]}
    body = {"quiz": quiz, "options": {"batch_size": 3, "shuffle_mode": "full"}, "seed": 123}
    first = client.post("/memorize/batches", json=body).json()
    second = client.post("/memorize/batches", json=body).json()
    assert [q["id"] for q in first["questions"]] == [q["id"] for q in second["questions"]]
    assert [len(b["questions"]) for b in first["batches"]] == [3, 3, 2]


def test_memorize_batches_rejects_bad_size(client):
    response = client.post("/memorize/batches", json={"quiz": {"questions": []}, "options": {"batch_size": 0}})
    assert response.status_code == 422


def test_batch_results(client):
    response = client.post("/memorize/batch-results", json={
        "questions": [MC_QUESTION],
        "answers": {"mc": "a"},
        "batch_index": 1,
        "chapter_name": "A",
    })
    assert response.status_code == 200
    body = response.json()
    assert body["batch_index"] == 1
    assert body["percentage"] == 100
    assert body["question_results"][0]["correct_answer"] == "a"


def test_batch_results_echoes_odd_answer(client):
    response = client.post("/memorize/batch-results", json={
        "questions": [MC_QUESTION],
        "answers": {"mc": [1, 2]},
    })
    assert response.status_code == 200
    result = response.json()["question_results"][0]
    assert result["is_correct"] is False
    assert result["user_answer"] == [1, 2]


def test_grade_success(client, stub_provider):
    response = client.post("/ai/grade", json=GRADE_BODY)
    assert response.status_code == 200
    assert response.json() == {"success": True, "correct": True, "score": 0.75, "feedback": "Solid"}
    assert stub_provider.calls == 1


def test_grade_missing_key(client, stub_provider):
    body = dict(GRADE_BODY)
    body.pop("api_key")
    response = client.post("/ai/grade", json=body)
    assert response.status_code == 400
    assert response.json()["needs_api_key"] is True
    assert stub_provider.calls == 0


def test_grade_rate_limited(client, limiter):
    for _ in range(10):
        limiter.record_request("gemini")
    response = client.post("/ai/grade", json=GRADE_BODY)
    assert response.status_code == 429
    assert response.json()["wait_time_ms"] == 60000


def test_grade_provider_failure(client, stub_provider):
    stub_provider.error = RuntimeError("upstream 503")
    response = client.post("/ai/grade", json=GRADE_BODY)
    assert response.status_code == 500
    assert response.json()["error"] == "upstream 503"


@pytest.mark.parametrize("override", [
    {"points": 0},
    {"question_text": "   "},
    {"user_answer": ""},
    {"provider": "mistral"},
])
def test_grade_validation(client, override):
    response = client.post("/ai/grade", json={**GRADE_BODY, **override})
    assert response.status_code == 422


def test_rate_limit_status(client, limiter, monkeypatch):
    monkeypatch.setattr(settings, "claude_api_key", "server-key")
    limiter.record_request("claude")
    response = client.get("/ai/grade", params={"provider": "claude"})
    assert response.status_code == 200
    assert response.json() == {
        "can_request": True,
        "wait_time_ms": 0,
        "request_count": 1,
        "provider": "claude",
        "has_api_key": True,
    }


def test_rate_limit_status_requires_provider(client):
    assert client.get("/ai/grade").status_code == 422


def test_metrics_endpoint(client):
    client.post("/quiz/check", json={"question": MC_QUESTION, "answer": "a"})
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "grading_requests_total" in response.text
