import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, ProgrammingError

from roro.core.config import settings
from roro.core.exceptions import BookingWorkflowError
from roro.core.logging import configure_logging
from roro.api.deps import get_orchestrator
from roro.api.v1.api import api_router
from roro.db.session import SessionLocal

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    scheduler = None
    if settings.RUN_DEADLINE_SCHEDULER:
        scheduler = get_orchestrator().scheduler
        db = SessionLocal()
        try:
            scheduler.rebuild(db)
        except (OperationalError, ProgrammingError):
            # DB not migrated yet; timers come back on the next restart or worker sweep
            db.rollback()
            logger.warning("deadline rebuild skipped: bookings table missing")
        finally:
            db.close()
        scheduler.start()
    yield
    if scheduler is not None:
        scheduler.stop()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# CORS: use CORS_ORIGINS from env in production; default to localhost for dev
_default_origins = [
    "http://127.0.0.1:8080", "http://localhost:8080",
    "http://127.0.0.1:3000", "http://localhost:3000",
]
_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingWorkflowError)
async def booking_workflow_error_handler(request: Request, exc: BookingWorkflowError):
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


app.include_router(api_router)


@app.get("/health")
def health():
    return {"status": "ok"}
