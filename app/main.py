"""
SchoolPulse FastAPI application entry point.
"""
import logging
import uuid
from contextvars import ContextVar

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.routes.events import router as events_router
from app.routes.health import router as health_router
from app.routes.metrics import router as metrics_router
from app.routes.registry import router as registry_router
from app.routes.reports import router as reports_router

# Request ID context variable
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")
        return True


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s request_id=%(request_id)s"
)

for handler in logging.getLogger().handlers:
    handler.addFilter(RequestIDFilter())

# Create FastAPI app
app = FastAPI(
    title="SchoolPulse",
    description="School engagement analytics over learning platform activity",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request_id_var.set(request_id)

    logger = logging.getLogger("app.request")
    logger.info(
        f"Request started method={request.method} url={str(request.url)} client_ip={request.client.host if request.client else 'unknown'}"
    )

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    logger.info(f"Request completed status_code={response.status_code}")
    return response


# Include routers
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router)
app.include_router(registry_router)
app.include_router(reports_router)
app.include_router(events_router)
