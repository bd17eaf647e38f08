import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from interview_scheduling.api.router import api_router
from interview_scheduling.core.config import settings
from interview_scheduling.core.exceptions import SchedulingError
from interview_scheduling.db.session import init_models
from interview_scheduling.jobs.scheduler import start_scheduler
from interview_scheduling.middleware.logging import RequestLoggingMiddleware

logging.basicConfig(level=logging.INFO)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("apscheduler.scheduler").setLevel(logging.WARNING)

logger = logging.getLogger("sched.app")

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("scheduling_error", extra={"code": exc.code, "path": request.url.path, "error": exc.message})
    content = {"detail": exc.message, "code": exc.code}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.get("/health")
async def health_check():
    return {"status": "ok", "environment": settings.environment}


app.include_router(api_router)


@app.on_event("startup")
async def _startup() -> None:
    await init_models()
    if settings.enable_jobs:
        app.state.scheduler = start_scheduler()


@app.on_event("shutdown")
async def _shutdown_jobs() -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler:
        scheduler.shutdown()
