import asyncio
import fcntl
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskhub.config import settings
from taskhub.routers.auth import router as auth_router
from taskhub.routers.lists import router as lists_router
from taskhub.routers.logs import router as logs_router
from taskhub.routers.projects import router as projects_router
from taskhub.routers.tasks import router as tasks_router
from taskhub.routers.users import router as users_router
from taskhub.routers.workspaces import router as workspaces_router
from taskhub.services.email_worker import email_worker
from taskhub.services.events import event_bus
from taskhub.services.notifications import register_listeners
from taskhub.services.scheduler import setup_scheduler

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(process)d] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

register_listeners(event_bus)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Only the worker that grabs the file lock runs the scheduler
    lock_fd = None
    scheduler = None

    try:
        lock_fd = open(settings.SCHEDULER_LOCK_FILE, "w")
        fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        logger.info("[PROCESS %s] Acquired scheduler lock. Starting APScheduler...", os.getpid())
        scheduler = setup_scheduler()
    except OSError:
        logger.info("[PROCESS %s] Another worker is running the scheduler. Skipping.", os.getpid())
        if lock_fd:
            lock_fd.close()
            lock_fd = None

    # Queues are per process, so every worker drains its own
    worker_task = asyncio.create_task(email_worker())
    events_task = asyncio.create_task(event_bus.run())

    yield

    if scheduler:
        scheduler.shutdown(wait=True)
    if lock_fd:
        fcntl.flock(lock_fd, fcntl.LOCK_UN)
        lock_fd.close()

    for task in (events_task, worker_task):
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    logger.info("[WORKER] Email and event workers shut down.")


app = FastAPI(
    lifespan=lifespan,
    title=f"{settings.APP_NAME} API",
    description="Workspaces, projects, lists and tasks with role-based membership",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(users_router)
app.include_router(workspaces_router)
app.include_router(projects_router)
app.include_router(lists_router)
app.include_router(tasks_router)
app.include_router(logs_router)


@app.get("/")
def root():
    return {"message": f"{settings.APP_NAME} API running"}
