import logging
import os
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from core.config import settings
from core.db import Base, engine
from core.celery import celery_app
from models.payment import InvalidTransitionError
from routes.admin import router as admin_router
from routes.me import router as me_router
from routes.payments import router as payments_router
from services.amounts import AmountResolutionError
from services.paiementpro import check_gateway_config
from services.references import ReferenceConflictError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Add OpenAPI security schemes for Bearer token authentication on docs/redoc
from fastapi.openapi.utils import get_openapi

def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
    }
    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

# Ensure tables exist (for dev/test; in prod use Alembic)
Base.metadata.create_all(bind=engine)
check_gateway_config()

app.include_router(payments_router)
app.include_router(me_router)
app.include_router(admin_router)


@app.exception_handler(AmountResolutionError)
async def amount_resolution_handler(request: Request, exc: AmountResolutionError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ReferenceConflictError)
async def reference_conflict_handler(request: Request, exc: ReferenceConflictError):
    logger.warning("Reference conflict on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=409, content={"detail": str(exc), "retryable": True})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
    }


@app.get("/celery-health")
async def celery_health_check():
    """Check Celery worker status"""
    try:
        inspect = celery_app.control.inspect()
        stats = inspect.stats()
        if stats:
            return {"status": "healthy", "workers": len(stats)}
        else:
            return {"status": "no_workers", "message": "No Celery workers running"}
    except Exception as e:
        logger.warning("Celery inspect failed: %s", e)
        return {"status": "unhealthy", "error": str(e)}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
    )
