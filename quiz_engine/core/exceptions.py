"""
Custom exceptions and error handling for the Quiz Engine
"""
from typing import Optional, Dict, Any


class QuizEngineException(Exception):
    """Base exception for the Quiz Engine"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UnknownQuestionTypeError(QuizEngineException):
    """Question discriminant outside the known variants"""

    def __init__(self, question_type: Any):
        super().__init__(
            f"Unhandled question type: {question_type}",
            {"question_type": str(question_type)}
        )
        self.question_type = question_type


class AIGradingError(QuizEngineException):
    """Error during AI grading provider calls"""
    pass


class ResponseParseError(AIGradingError):
    """AI provider output could not be parsed into a grade"""
    pass


class RateLimitError(QuizEngineException):
    """Rate limit exceeded"""

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message, {"retry_after": retry_after})
        self.retry_after = retry_after


class MissingAPIKeyError(QuizEngineException):
    """No API key available for a grading provider"""

    def __init__(self, provider: str, env_var: Optional[str] = None):
        message = f"API key not configured for {provider}."
        if env_var:
            message += f" Please provide an API key or set {env_var} environment variable."
        super().__init__(message, {"provider": provider, "env_var": env_var})
        self.provider = provider


class SessionStateError(QuizEngineException):
    """Memorize session action not allowed in the current phase"""
    pass


class ConfigurationError(QuizEngineException):
    """Configuration error"""
    pass
