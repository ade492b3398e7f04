import logging
import traceback
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from app.config.config import settings
from app.db.base import Base
from app.db.session import engine
from app.api.dependencies import get_db
from app.api.v1 import router as api_router
from app.core.counter_store import create_counter_store
from app.core.exceptions import LoginSecurityError, RestrictionException
from app.core.utils import setup_logging
from app.schemas.login_schemas import ErrorResponse
from app import models  # noqa: F401  registers tables on Base.metadata

logger = logging.getLogger("uvicorn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup & Shutdown lifespan events."""
    # -------- STARTUP --------
    setup_logging(settings.LOG_LEVEL)
    logger.info("Starting login security service...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    try:
        async with engine.begin() as conn:
            if settings.ENVIRONMENT != "production":
                await conn.run_sync(Base.metadata.create_all)
            else:
                await conn.run_sync(lambda _: None)
        logger.info("Database connection established successfully.")
    except Exception as e:
        logger.error(f"Startup initialization failed: {e}")
        logger.error(traceback.format_exc())
        logger.error("Application may not function correctly")

    app.state.counter_store = await create_counter_store(
        settings.COUNTER_STORE_TYPE,
        settings.REDIS_URL,
        socket_timeout=settings.STORE_TIMEOUT_SECONDS,
    )
    logger.info("Application startup complete")

    yield

    # -------- SHUTDOWN --------
    logger.info("Shutting down application...")
    await app.state.counter_store.close()
    await engine.dispose()
    logger.info("Database engine disposed")
    logger.info("Shutdown complete")


def error_body(exc: LoginSecurityError) -> dict:
    """Render an engine error; compliance restrictions are flagged for the client."""
    is_restriction = isinstance(exc, RestrictionException)
    return ErrorResponse(
        detail=exc.message,
        type=exc.error_type,
        restricted_region=is_restriction and exc.is_compliance,
        restriction_category=exc.restriction_category.value if is_restriction else None,
        data=exc.data,
    ).model_dump()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        lifespan=lifespan,
    )

    # ---------------------- EXCEPTION HANDLERS ----------------------
    @app.exception_handler(LoginSecurityError)
    async def login_security_exception_handler(request: Request, exc: LoginSecurityError):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        logger.error(f"Unhandled Error: {trace}")

        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "error": (
                    str(exc) if settings.ENVIRONMENT != "production" else "Server error"
                ),
            },
        )

    # ---------------------- HTTPS REDIRECT ----------------------
    @app.middleware("http")
    async def https_redirect(request: Request, call_next):
        if settings.ENVIRONMENT == "production":
            if request.headers.get("x-forwarded-proto") == "http":
                return RedirectResponse(str(request.url.replace(scheme="https")))
        return await call_next(request)

    # ---------------------- CORS ----------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------------------- ROUTES ----------------------
    app.include_router(api_router, prefix=settings.API_PREFIX)

    # ---------------------- HEALTH CHECK ----------------------
    @app.get("/health")
    async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
        store = getattr(request.app.state, "counter_store", None)
        try:
            await db.execute(text("SELECT 1"))
            return {
                "status": "healthy",
                "environment": settings.ENVIRONMENT,
                "database": "connected",
                "counter_store": type(store).__name__ if store else None,
            }
        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "database": "disconnected",
                    "error": str(e),
                },
            )

    return app


app = create_app()
