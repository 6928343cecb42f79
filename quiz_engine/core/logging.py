"""
Structured logging and monitoring for the Quiz Engine service
"""
import sys
import time
import asyncio
from functools import wraps
from typing import Optional, Callable
from contextvars import ContextVar
import structlog
from structlog.processors import CallsiteParameter, CallsiteParameterAdder
from prometheus_client import Counter, Histogram
import logging

from quiz_engine.config import settings

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Prometheus metrics
grading_requests = Counter("grading_requests_total", "Total grading API requests", ["endpoint", "status"])
ai_grading_requests = Counter("ai_grading_requests_total", "Total AI grading requests", ["provider", "status"])
ai_grading_duration = Histogram("ai_grading_duration_seconds", "AI grading request duration", ["provider"])
ai_grading_rate_limited = Counter("ai_grading_rate_limited_total", "AI grading requests rejected by the rate limiter", ["provider"])
memorize_batches_created = Counter("memorize_batches_created_total", "Memorize batches created", ["mode"])


def add_request_context(logger, method_name, event_dict):
    """Add request context to log events"""
    request_id = request_id_var.get()

    if request_id:
        event_dict["request_id"] = request_id

    event_dict["service"] = "quiz-engine"
    event_dict["environment"] = settings.environment.value

    return event_dict


def setup_logging():
    """Configure structured logging for the application"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_request_context,
        CallsiteParameterAdder(
            parameters=[CallsiteParameter.FILENAME, CallsiteParameter.LINENO]
        ),
        structlog.processors.UnicodeDecoder(),
    ]

    # Use JSON in production
    if settings.log_format == "json" or settings.is_production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a configured logger instance"""
    return structlog.get_logger(name)


def log_execution_time(func: Callable) -> Callable:
    """Decorator to log and measure function execution time"""
    logger = get_logger(func.__module__)

    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        start_time = time.time()
        function_name = func.__name__

        try:
            result = await func(*args, **kwargs)
            logger.debug("function_success",
                         function=function_name,
                         duration_seconds=time.time() - start_time)
            return result
        except Exception as e:
            logger.error("function_error",
                         function=function_name,
                         duration_seconds=time.time() - start_time,
                         error=str(e),
                         error_type=type(e).__name__)
            raise

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        start_time = time.time()
        function_name = func.__name__

        try:
            result = func(*args, **kwargs)
            logger.debug("function_success",
                         function=function_name,
                         duration_seconds=time.time() - start_time)
            return result
        except Exception as e:
            logger.error("function_error",
                         function=function_name,
                         duration_seconds=time.time() - start_time,
                         error=str(e),
                         error_type=type(e).__name__)
            raise

    if asyncio.iscoroutinefunction(func):
        return async_wrapper
    return sync_wrapper


class MetricsLogger:
    """Helper class for logging with metrics"""

    def __init__(self, logger: structlog.BoundLogger):
        self.logger = logger

    def log_ai_grading_request(self, provider: str, points: float, answer_length: int):
        """Log AI grading request"""
        self.logger.info("ai_grading_request",
                         provider=provider,
                         points=points,
                         answer_length=answer_length)

    def log_ai_grading_complete(self, provider: str, duration: float, success: bool = True,
                                error: Optional[str] = None):
        """Log AI grading completion"""
        status = "success" if success else "error"
        ai_grading_requests.labels(provider=provider, status=status).inc()
        ai_grading_duration.labels(provider=provider).observe(duration)

        if success:
            self.logger.info("ai_grading_complete",
                             provider=provider,
                             duration_seconds=duration)
        else:
            self.logger.error("ai_grading_failed",
                              provider=provider,
                              duration_seconds=duration,
                              error=error)

    def log_rate_limited(self, provider: str, wait_time_ms: int):
        """Log a request rejected by the rate limiter"""
        ai_grading_rate_limited.labels(provider=provider).inc()
        self.logger.warning("ai_grading_rate_limited",
                            provider=provider,
                            wait_time_ms=wait_time_ms)

    def log_batches_created(self, mode: str, batch_count: int, question_count: int):
        """Log memorize batch creation"""
        memorize_batches_created.labels(mode=mode).inc(batch_count)
        self.logger.info("memorize_batches_created",
                         mode=mode,
                         batches=batch_count,
                         questions=question_count)


# Initialize logging on module import
setup_logging()

# Create default logger
logger = get_logger(__name__)
metrics_logger = MetricsLogger(logger)
