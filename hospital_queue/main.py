from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError

from .database import init_db
from .errors import ConflictError, InfrastructureError, QueueError
from .logger import get_logger
from .modules.analytics import routers as analytics_routers
from .modules.checkins import routers as checkin_routers
from .modules.queue import routers as queue_routers
from .modules.triage import routers as triage_routers

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Database tables ready")
    yield


app = FastAPI(
    title="Hospital Queue & Triage API",
    description="Department queues, triage prioritization and wait-time analytics.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- ERROR RESPONSES ---
@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError):
    logger.warning("%s %s rejected: %s %s", request.method, request.url.path, exc.code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("%s %s hit a constraint: %s", request.method, request.url.path, exc.orig)
    error = ConflictError("The change conflicts with existing data.")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    logger.error("%s %s database failure: %s", request.method, request.url.path, exc.orig)
    error = InfrastructureError("Database unavailable.", retryable=request.method == "GET")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# --- ROUTERS ---
app.include_router(triage_routers.router, prefix="/triage", tags=["Triage"])
app.include_router(checkin_routers.router, prefix="/checkins", tags=["Check-ins"])
app.include_router(queue_routers.router, prefix="/queues", tags=["Queues"])
app.include_router(analytics_routers.router, prefix="/analytics", tags=["Analytics"])


@app.get("/", tags=["General"])
def root():
    return {"message": "Hospital queue service is running. See /docs for the API."}


if __name__ == "__main__":
    uvicorn.run("hospital_queue.main:app", host="127.0.0.1", port=8000, reload=True)
