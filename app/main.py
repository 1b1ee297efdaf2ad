import time
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from app.api.v1.api import api_router
from app.api.v1.auth import get_database_service
from app.core.config import settings
from app.core.errors import GatewayError
from app.core.limiter import endpoint_limit, limiter
from app.core.logging import bind_context, clear_context, logger
from app.services.database_service import DatabaseService, database_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; the pool is released with the process."""
    logger.info(
        "application_startup",
        project_name=settings.PROJECT_NAME,
        version=settings.VERSION,
        environment=settings.ENVIRONMENT.value,
    )
    database_service.init_db()
    yield
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging(request: Request, call_next):
    clear_context()
    bind_context(method=request.method, path=request.url.path)
    started = time.monotonic()
    response = await call_next(request)
    logger.info(
        "request_completed",
        status_code=response.status_code,
        duration_ms=round((time.monotonic() - started) * 1000),
    )
    return response


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("database_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Database error", "error_code": "database_error"},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Flatten pydantic errors into {field, message} pairs."""
    formatted_errors = []
    for error in exc.errors():
        loc = " -> ".join(str(part) for part in error["loc"] if part != "body")
        formatted_errors.append({"field": loc, "message": error["msg"]})

    logger.info("request_validation_failed", errors=formatted_errors)
    return JSONResponse(
        status_code=422,
        content={"detail": "Validation error", "error_code": "validation_error", "errors": formatted_errors},
    )


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health")
@limiter.limit(endpoint_limit("health"))
async def health_check(request: Request, db: DatabaseService = Depends(get_database_service)):
    """Liveness plus database connectivity."""
    db_healthy = await db.health_check()
    response = {
        "status": "healthy" if db_healthy else "degraded",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT.value,
        "components": {"api": "healthy", "database": "healthy" if db_healthy else "unhealthy"},
    }
    status_code = status.HTTP_200_OK if db_healthy else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(content=response, status_code=status_code)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG, log_config=None)
