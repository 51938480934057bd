"""Main FastAPI application entry point."""
import logging
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from civic_requests.database import engine, Base
from civic_requests.api.routes import router
# Import models to register them with SQLAlchemy Base
from civic_requests.models.domain import ServiceRequest
from civic_requests.models.audit import AuditEvent

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables
    Base.metadata.create_all(bind=engine)
    yield


# Create FastAPI app
app = FastAPI(
    title="Civic Requests - Service Request Lifecycle",
    description="Workflow engine for municipal service requests: transitions, role gating and optimistic locking.",
    version="0.1.0",
    lifespan=lifespan
)

# Callables invoked with each committed AuditEvent (e.g. a notification dispatcher)
app.state.audit_listeners = []

# Enable CORS for the portal front-end
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["ETag", "X-Correlation-Id"],
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Tag every request with a correlation id, reusing the caller's when given."""
    correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    response.headers["X-Correlation-Id"] = correlation_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Body/query validation failures use the same error shape as workflow refusals."""
    logger.info("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request data",
                "details": {"errors": jsonable_encoder(exc.errors())},
                "correlation_id": getattr(request.state, "correlation_id", None)
            }
        }
    )


# Include API routes
app.include_router(router, prefix="/api", tags=["Service Requests"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Civic Requests"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
