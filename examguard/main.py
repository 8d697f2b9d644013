"""
ExamGuard Proctoring Service - FastAPI Application
"""
import time
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import settings
from .proctor import router as proctor_router
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Real-time exam integrity monitoring",
    version=__version__,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with timing."""
    start = time.time()
    response = await call_next(request)
    duration_ms = int((time.time() - start) * 1000)

    if request.url.path not in ["/health", "/favicon.ico"]:
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {duration_ms}ms")

    return response


# CORS middleware - the exam client is served from another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using wildcard origin
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(proctor_router)


@app.on_event("startup")
async def startup_event():
    """Configure logging and report model availability."""
    from .proctor.models import check_models

    setup_logging(
        service_name="examguard",
        level=settings.LOG_LEVEL,
        log_to_file=settings.LOG_TO_FILE,
        log_dir=settings.LOG_DIR
    )

    models = check_models(settings.MODELS_DIR)
    logger.info(f"{settings.APP_NAME} starting (debug={settings.DEBUG})")
    for name, available in models.items():
        if not available:
            logger.warning(f"Model '{name}' unavailable; visual proctoring will report status 'error'")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": __version__
    }


def run():
    """Serve the API with uvicorn"""
    import uvicorn

    uvicorn.run("examguard.main:app", host="0.0.0.0", port=8001, reload=settings.DEBUG)


if __name__ == "__main__":
    run()
