"""
Case Documents Service API
==========================

FastAPI app for document requirement tracking across current and legacy cases.

Endpoints (all under /api/v1):
- POST   /cases/{case_id}/requirements                  - Create requirement
- GET    /cases/{case_id}/requirements                  - List case requirements
- DELETE /cases/{case_id}/requirements?document_name=   - Bulk remove by name
- GET    /cases/{case_id}/completion                    - Case completion
- GET    /cases/{case_id}/history                       - Case history
- GET    /contacts/{contact_id}/requirements            - Effective requirements for a contact
- POST   /contacts/{contact_id}/requirements/defaults   - Create default documents
- GET    /contacts/{contact_id}/completion              - Contact completion
- GET    /requirements?case_id=...                      - List across cases
- GET    /requirements/due-soon                         - Pending/missing due soon
- GET    /requirements/missing-count?case_id=...        - Count of missing documents
- GET    /requirements/{id}                             - Get requirement
- PATCH  /requirements/{id}                             - Partial update
- DELETE /requirements/{id}                             - Delete requirement
- PUT    /requirements/{id}/status                      - Change status
- PUT    /requirements/{id}/provenance/{field}          - Change requested_from/received_from
- GET    /requirements/{id}/history                     - Requirement history
- GET    /jobs/{job_id}                                 - Deferred history job status

- GET    /health                                        - Health check

Run with:
    uvicorn casedocs.api:app --host 0.0.0.0 --port 8000
"""

import logging
import os
from datetime import datetime
from typing import List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api_requirements import router as requirements_router
from .config import get_settings
from .db.session import init_db
from .errors import CaseDocsError, ValidationError
from .schemas import HealthResponse

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Case Documents Service",
    description="Document requirement lifecycle and audit tracking for immigration cases",
    version=get_settings().service_version,
    docs_url="/docs",
    redoc_url="/redoc",
)


# CORS - get allowed origins from environment, default to localhost for development
def _parse_cors_origins(raw: str) -> List[str]:
    origins: List[str] = []
    for item in raw.split(","):
        origin = item.strip().strip('"').strip("'").rstrip("/")
        if origin:
            origins.append(origin)
    return origins


CORS_ALLOW_ORIGINS = _parse_cors_origins(
    os.environ.get("CORS_ALLOW_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(requirements_router, prefix="/api/v1")


@app.exception_handler(CaseDocsError)
async def casedocs_error_handler(request: Request, exc: CaseDocsError):
    """Map service errors to their HTTP status with a stable category."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and parameters share the validation_error category."""
    errors = [
        {"loc": err.get("loc"), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    first = errors[0]["msg"] if errors else "bad input"
    error = ValidationError(f"Invalid request: {first}")
    content = error.to_dict()
    content["errors"] = errors
    return JSONResponse(status_code=error.status_code, content=content)


@app.on_event("startup")
async def startup_event():
    """Initialize on startup"""
    settings = get_settings()
    logger.info(f"Starting Case Documents Service v{settings.service_version}")

    for warning in settings.validate_config():
        logger.warning(f"Config: {warning}")

    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(
        status="ok",
        version=get_settings().service_version,
        timestamp=datetime.utcnow(),
    )
