"""
Identity Service - FastAPI Application Entry Point

Resolves customer identity across partial email / phone submissions.

Run locally:

    python -m api.main                      # host/port from settings
    uvicorn api.main:app --port 3000        # or directly
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.exceptions import RequestValidationError

from api.routes import identify
from config.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - open the contact store on startup."""
    from api.services.contact_store import get_contact_store, reset_contact_store
    from api.services.identity_resolver import reset_identity_resolver

    try:
        store = get_contact_store()
        logger.info(f"Contact store ready ({store.count()} contacts)")
    except Exception as e:
        logger.error(f"Failed to open contact store: {e}")

    yield  # Application runs here

    reset_identity_resolver()
    reset_contact_store()
    logger.info("Contact store closed")


app = FastAPI(
    title="Identity Service",
    description="Consolidates contact details submitted over time into one identity per customer",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(identify.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with clear messages."""
    errors = exc.errors()

    # Sanitize errors for JSON serialization (convert bytes to string)
    sanitized_errors = []
    for error in errors:
        sanitized = dict(error)
        if "input" in sanitized and isinstance(sanitized["input"], bytes):
            sanitized["input"] = sanitized["input"].decode("utf-8", errors="replace")
        sanitized.pop("ctx", None)
        sanitized_errors.append(sanitized)

    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "detail": sanitized_errors}
    )


@app.get("/", response_class=PlainTextResponse)
async def root():
    """Banner to verify the server is running."""
    return "Hello from the Identity API!"


@app.get("/health")
async def health_check():
    """Health check endpoint that verifies the contact store answers queries."""
    from api.services.contact_store import get_contact_store

    checks = {}
    try:
        get_contact_store().count()
        checks["database"] = True
    except Exception as e:
        logger.error(f"Health check: contact store unavailable: {e}")
        checks["database"] = False

    all_healthy = all(checks.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "service": "identity",
        "checks": checks,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
