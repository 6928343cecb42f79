from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from quiz_engine.core.exceptions import UnknownQuestionTypeError
from quiz_engine.utils.rich_text import RichText


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    MULTIPLE_ANSWER = "multiple_answer"
    TRUE_FALSE = "true_false"
    FILL_BLANK = "fill_blank"
    DROPDOWN = "dropdown"
    FREE_TEXT = "free_text"
    NUMERIC = "numeric"
    FILE_UPLOAD = "file_upload"


QUESTION_TYPE_VALUES = {t.value for t in QuestionType}

ToleranceType = Literal["off", "0.1", "1"]


class ChoiceState(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"


class ShuffleMode(str, Enum):
    NONE = "none"
    FULL = "full"
    WITHIN_CHAPTERS = "within-chapters"
    CHAPTERS_ONLY = "chapters-only"
    BOTH = "both"


class AIProvider(str, Enum):
    GEMINI = "gemini"
    DEEPSEEK = "deepseek"
    CLAUDE = "claude"
    OPENAI = "openai"


# str: choice id / "true"|"false" / free text / numeric text
# List[str]: choice ids, or one value per blank / dropdown slot
UserAnswer = Optional[Union[str, List[str]]]


# ======================= Authored Content =======================

class ContentModel(BaseModel):
    """Authored content arrives camelCased from the quiz editor."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Chapter(ContentModel):
    id: str
    name: str


class Choice(ContentModel):
    id: str
    text: RichText = ""
    correct: bool = False
    hint: Optional[RichText] = None


class BaseQuestion(ContentModel):
    id: str
    text: RichText = ""
    points: float = Field(default=1, ge=0)
    chapter: Optional[str] = None
    identifier: Optional[str] = None
    explanation: Optional[str] = None
    hint_correct: Optional[RichText] = None
    hint_wrong: Optional[RichText] = None


class MultipleChoiceQuestion(BaseQuestion):
    type: Literal["multiple_choice"] = "multiple_choice"
    choices: List[Choice] = Field(default_factory=list)


class MultipleAnswerQuestion(BaseQuestion):
    type: Literal["multiple_answer"] = "multiple_answer"
    choices: List[Choice] = Field(default_factory=list)


class TrueFalseQuestion(BaseQuestion):
    type: Literal["true_false"] = "true_false"
    correct: bool


class FillBlankQuestion(BaseQuestion):
    type: Literal["fill_blank"] = "fill_blank"
    answers: List[str] = Field(default_factory=list)
    inline: bool = True
    numeric: bool = False
    tolerance: Optional[ToleranceType] = None
    case_sensitive: bool = False


class DropdownQuestion(BaseQuestion):
    type: Literal["dropdown"] = "dropdown"
    choices: List[Choice] = Field(default_factory=list)
    answers: List[str] = Field(default_factory=list)


class FreeTextQuestion(BaseQuestion):
    type: Literal["free_text"] = "free_text"
    reference_answer: Optional[RichText] = None
    ai_grading_enabled: bool = False


class NumericQuestion(BaseQuestion):
    type: Literal["numeric"] = "numeric"
    correct_answer: float
    tolerance: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None


class FileUploadQuestion(BaseQuestion):
    type: Literal["file_upload"] = "file_upload"
    accepted_types: List[str] = Field(default_factory=list)
    max_file_size_mb: float = Field(default=10, gt=0, alias="maxFileSizeMB")
    reference_answer: Optional[RichText] = None


Question = Annotated[
    Union[
        MultipleChoiceQuestion,
        MultipleAnswerQuestion,
        TrueFalseQuestion,
        FillBlankQuestion,
        DropdownQuestion,
        FreeTextQuestion,
        NumericQuestion,
        FileUploadQuestion,
    ],
    Field(discriminator="type"),
]

CHOICE_QUESTION_TYPES = (MultipleChoiceQuestion, MultipleAnswerQuestion, DropdownQuestion)

_question_adapter = TypeAdapter(Question)


def parse_question(data: Union[BaseQuestion, Mapping[str, Any]]) -> BaseQuestion:
    """Validate a question payload into its variant model.

    Raises UnknownQuestionTypeError when the discriminant names no known
    variant; other shape problems surface as pydantic ValidationError.
    """
    if isinstance(data, BaseQuestion):
        return data
    qtype = data.get("type") if isinstance(data, Mapping) else None
    if qtype not in QUESTION_TYPE_VALUES:
        raise UnknownQuestionTypeError(qtype)
    return _question_adapter.validate_python(dict(data))


class Quiz(ContentModel):
    id: str = ""
    title: str = ""
    description: Optional[str] = None
    questions: List[Question] = Field(default_factory=list)
    chapters: Optional[List[Chapter]] = None
    ai_grading_enabled: Optional[bool] = None


# ======================= Grading Results =======================

class BlankResult(BaseModel):
    user_answer: str
    correct_answer: str
    is_correct: bool


class DropdownResult(BaseModel):
    user_answer: str
    correct_answer: str
    is_correct: bool


class TrueFalseResult(BaseModel):
    is_correct: bool
    correct_answer: bool


class FreeTextResult(BaseModel):
    is_correct: bool
    reference_answer: Optional[str] = None
    feedback: Optional[str] = None
    # Normalized 0-1 score
    score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    graded_by_ai: bool = False
    pending_ai_grade: bool = False
    ai_error: Optional[str] = None


class FileUploadResult(BaseModel):
    has_upload: bool
    filename: Optional[str] = None
    pending_manual_grade: bool = True


class CheckResult(BaseModel):
    type: QuestionType
    is_correct: bool
    earned_points: float = Field(ge=0)
    max_points: float = Field(ge=0)
    choice_states: Optional[Dict[str, ChoiceState]] = None
    blank_results: Optional[List[BlankResult]] = None
    dropdown_results: Optional[List[DropdownResult]] = None
    true_false_result: Optional[TrueFalseResult] = None
    free_text_result: Optional[FreeTextResult] = None
    file_upload_result: Optional[FileUploadResult] = None

    @model_validator(mode="after")
    def check_points_bounds(self):
        if self.earned_points > self.max_points:
            raise ValueError("earned_points cannot exceed max_points")
        return self

    @property
    def pending_ai_grade(self) -> bool:
        return bool(self.free_text_result and self.free_text_result.pending_ai_grade)


class ScoreSummary(BaseModel):
    correct_count: int
    total_questions: int
    earned_points: float
    total_points: float
    percentage: int
    results: Dict[str, CheckResult] = Field(default_factory=dict)

    @property
    def pending_ai_question_ids(self) -> List[str]:
        return [qid for qid, result in self.results.items() if result.pending_ai_grade]


# ======================= Sequencing =======================

BatchSize = Union[int, Literal["all", "chapters"]]


class BatchInfo(BaseModel):
    questions: List[Question]
    chapter_name: Optional[str] = None


class MemorizeOptions(BaseModel):
    batch_size: Union[Literal["all", "chapters"], int] = 10
    shuffle_mode: ShuffleMode = ShuffleMode.NONE
    shuffle_choices: bool = False
    # Restrict the session to these chapter ids
    selected_chapters: Optional[List[str]] = None

    @field_validator("batch_size")
    def validate_batch_size(cls, v):
        if isinstance(v, int) and v < 1:
            raise ValueError("batch_size must be a positive integer, 'all' or 'chapters'")
        return v


class QuestionResult(BaseModel):
    question_id: str
    question_text: str
    type: QuestionType
    # Raw submission, echoed back whatever its shape
    user_answer: Any = None
    points: float
    earned_points: float
    is_correct: bool
    correct_answer: Optional[Union[bool, float, str, List[str]]] = None
    blank_results: Optional[List[BlankResult]] = None


class BatchResult(BaseModel):
    batch_index: int
    correct_count: int
    total_questions: int
    earned_points: float
    total_points: float
    percentage: int
    question_results: List[QuestionResult] = Field(default_factory=list)
    chapter_name: Optional[str] = None


class CumulativeResults(BaseModel):
    correct_count: int = 0
    total_questions: int = 0
    earned_points: float = 0.0
    total_points: float = 0.0

    def add(self, batch: BatchResult) -> "CumulativeResults":
        return CumulativeResults(
            correct_count=self.correct_count + batch.correct_count,
            total_questions=self.total_questions + batch.total_questions,
            earned_points=round(self.earned_points + batch.earned_points, 2),
            total_points=round(self.total_points + batch.total_points, 2),
        )

    def subtract(self, batch: BatchResult) -> "CumulativeResults":
        return CumulativeResults(
            correct_count=self.correct_count - batch.correct_count,
            total_questions=self.total_questions - batch.total_questions,
            earned_points=round(self.earned_points - batch.earned_points, 2),
            total_points=round(self.total_points - batch.total_points, 2),
        )


# ======================= AI Grading =======================

class GradingRequest(BaseModel):
    question_text: str
    reference_answer: Optional[str] = None
    user_answer: str
    points: float = Field(ge=0)


class GradingResponse(BaseModel):
    success: bool
    correct: Optional[bool] = None
    # Normalized 0-1 score
    score: Optional[float] = None
    feedback: Optional[str] = None
    error: Optional[str] = None
    needs_api_key: Optional[bool] = None
    wait_time_ms: Optional[int] = None


class RawGradingResult(BaseModel):
    correct: bool
    # Points awarded, 0..points
    score: float
    feedback: str


class RateLimitInfo(BaseModel):
    can_request: bool
    wait_time_ms: int
    request_count: int


# ======================= HTTP Payloads =======================

class GradeApiRequest(GradingRequest):
    provider: AIProvider
    points: float = Field(gt=0)
    api_key: Optional[str] = None

    @field_validator("question_text", "user_answer")
    def validate_not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("must be a non-empty string")
        return v


class RateLimitStatus(RateLimitInfo):
    provider: AIProvider
    has_api_key: bool


class CheckAnswerRequest(BaseModel):
    question: Dict[str, Any]
    # Shape is checked per question type at grading time
    answer: Any = None


class ScoreRequest(BaseModel):
    questions: List[Dict[str, Any]]
    answers: Dict[str, Any] = Field(default_factory=dict)


class MemorizeBatchesRequest(BaseModel):
    quiz: Quiz
    options: MemorizeOptions = Field(default_factory=MemorizeOptions)
    seed: Optional[int] = None


class MemorizeBatchesResponse(BaseModel):
    questions: List[Question]
    batches: List[BatchInfo]


class BatchResultsRequest(BaseModel):
    questions: List[Dict[str, Any]]
    answers: Dict[str, Any] = Field(default_factory=dict)
    batch_index: int = Field(default=0, ge=0)
    chapter_name: Optional[str] = None
