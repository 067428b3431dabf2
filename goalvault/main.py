# goalvault/main.py
import uvicorn
import os
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from goalvault.core.config import settings
from goalvault.core.database import engine, Base
from goalvault.core.errors import GoalServiceError, InvalidRequest
from goalvault.api.v1.api import api_router
# Register models on Base.metadata
from goalvault.models import goal  # noqa: F401

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create all tables on startup (production schema changes go through Alembic)
async def create_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    openapi_tags=[
        {"name": "Goals", "description": "Funding goals and their deposit ledger"},
    ],
)

# CORS: bearer tokens only, no cookies, so any origin may call us
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

# ------------------------------------------------------------
# ERROR HANDLERS: every failure is {"error": ..., "details"?: ...}
# ------------------------------------------------------------
@app.exception_handler(GoalServiceError)
async def goal_service_error_handler(request: Request, exc: GoalServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    error = InvalidRequest("Invalid request body", details=details)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "details": str(exc)},
    )

# ------------------------------------------------------------
# ROOT AND HEALTH
# ------------------------------------------------------------
@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"{settings.APP_NAME} is running!",
        "version": settings.VERSION,
    }

@app.get("/health", tags=["Health"])
async def health_check():
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "auth_configured": settings.auth_configured,
    }

# ------------------------------------------------------------
# BUSINESS LOGIC ROUTES
# ------------------------------------------------------------
app.include_router(api_router, prefix="/api/v1")

# ------------------------------------------------------------
# STARTUP EVENT
# ------------------------------------------------------------
@app.on_event("startup")
async def on_startup():
    """Startup event to create database tables"""
    try:
        await create_db_and_tables()
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Startup error: {str(e)}")
        raise
    if not settings.auth_configured:
        logger.warning("PRIVY_APP_ID / PRIVY_PUBLIC_VERIFICATION_KEY not set - authenticated routes will answer 500")

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("goalvault.main:app", host="0.0.0.0", port=port, reload=False)
