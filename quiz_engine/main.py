"""
FastAPI application for quiz grading, AI grading and memorize batching
"""
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import time
import uuid
from contextlib import asynccontextmanager

from quiz_engine.config import settings
from quiz_engine.core.logging import get_logger, setup_logging, request_id_var
from quiz_engine.core.exceptions import QuizEngineException
from quiz_engine.routes import grading_routes, quiz_routes


logger = get_logger(__name__)

SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    setup_logging()
    logger.info("Quiz engine starting up",
                environment=settings.environment.value,
                debug=settings.debug)
    yield
    logger.info("Quiz engine shutting down")


app = FastAPI(
    title="Quiz Engine",
    version=SERVICE_VERSION,
    description="Answer checking, scoring, AI grading and memorize-mode batching",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID to all requests"""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request_id_var.set(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing"""
    start_time = time.time()
    logger.info("request_received",
                method=request.method,
                path=request.url.path,
                client=request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error("request_failed",
                     method=request.method,
                     path=request.url.path,
                     error=str(e),
                     duration_seconds=time.time() - start_time)
        raise

    duration = time.time() - start_time
    logger.info("request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_seconds=duration)
    response.headers["X-Process-Time"] = str(duration)
    return response


@app.exception_handler(QuizEngineException)
async def handle_quiz_engine_exception(request: Request, exc: QuizEngineException):
    """Handle domain exceptions"""
    logger.error("Application error",
                 error=exc.message,
                 details=exc.details,
                 path=request.url.path)

    return JSONResponse(
        status_code=400,
        content={
            "error": exc.message,
            "details": exc.details,
            "request_id": request_id_var.get()
        }
    )


@app.exception_handler(Exception)
async def handle_generic_exception(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error("Unexpected error",
                 error=str(exc),
                 error_type=type(exc).__name__,
                 path=request.url.path)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.debug else "An unexpected error occurred",
            "request_id": request_id_var.get()
        }
    )


app.include_router(grading_routes.router)
app.include_router(quiz_routes.router)


@app.get("/health")
async def health():
    """Basic health check"""
    return {
        "status": "healthy",
        "service": "quiz-engine",
        "version": SERVICE_VERSION,
        "environment": settings.environment.value
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Quiz Engine",
        "version": SERVICE_VERSION,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics"
    }
