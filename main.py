import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from app.api.endpoints import auth, health
from app.core.auth_events import auth_events, log_auth_event
from app.core.config import settings
from app.core.errors import MatchifyError
from app.db.session import init_db
from app.services.nonce_store import run_nonce_purge

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    unsubscribe = auth_events.subscribe(log_auth_event)

    stop_event = asyncio.Event()
    purge_task = None
    if settings.NONCE_PURGE_INTERVAL_SECONDS > 0:
        purge_task = asyncio.create_task(
            run_nonce_purge(settings.NONCE_PURGE_INTERVAL_SECONDS, stop_event)
        )
    try:
        yield
    finally:
        stop_event.set()
        if purge_task is not None:
            await purge_task
        unsubscribe()


# Define the FastAPI application instance
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Clients only ever see the generic public message; details stay in the log.
@app.exception_handler(MatchifyError)
async def matchify_error_handler(request: Request, exc: MatchifyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    else:
        logger.warning(
            "%s %s rejected (%s): %s",
            request.method, request.url.path, type(exc).__name__, exc.detail,
        )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("%s %s malformed request: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Missing required fields"}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s crashed", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Internal server error"}
    )


# Include your API routers
g_prefix = "/api"
app.include_router(health.router, prefix=g_prefix)
app.include_router(auth.router, prefix=g_prefix + "/auth")


if __name__ == "__main__":
    logger.info("Web3 auth API server starting on http://%s:%s", settings.HOST, settings.PORT)
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        ssl_keyfile=settings.SSL_KEY,
        ssl_certfile=settings.SSL_CERT,
        reload=settings.DEBUG
    )
