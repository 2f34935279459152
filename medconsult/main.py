import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import models  # noqa: F401 - register models with Base
from .collaborators import build_collaborators
from .database import Base, engine
from .errors import AppError
from .workers.periodic import build_supervisor

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Set to false when the ARQ worker runs the daemons instead
RUN_BACKGROUND_TASKS = os.getenv("RUN_BACKGROUND_TASKS", "true").lower() == "true"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    app.state.collaborators = build_collaborators()
    app.state.supervisor = build_supervisor(app.state.collaborators)
    if RUN_BACKGROUND_TASKS:
        app.state.supervisor.start()
        logger.info("Background tasks started")
    else:
        logger.info("Background tasks disabled in this process")

    yield

    logger.info("Application shutting down...")
    await app.state.supervisor.stop()


app = FastAPI(title="MedConsult API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {exc.kind}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} - {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"kind": exc.kind, "message": exc.message})


@app.get("/health")
async def health():
    supervisor = getattr(app.state, "supervisor", None)
    tasks = {name: task.running for name, task in supervisor.tasks.items()} if supervisor else {}
    return {"status": "ok", "backgroundTasks": tasks}
