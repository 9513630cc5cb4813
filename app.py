from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers.rooms import rooms_router
from backend import RoomRegistry
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL
from errors import InvalidRequest, SignalingError
from signaling import SignalingService
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(registry: RoomRegistry = None, **service_options) -> FastAPI:
    """Build the relay application around a fresh (or supplied) room registry."""
    signaling = SignalingService(registry=registry, **service_options)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Ends every open event stream so the server can stop
        await signaling.shutdown()

    app = FastAPI(title="Signaling Relay", lifespan=lifespan)
    app.state.signaling = signaling

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(SignalingError)
    async def signaling_error_handler(request: Request, exc: SignalingError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.warning(f"{request.method} {request.url.path} rejected with {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"{request.method} {request.url.path} malformed body: {exc.errors()}")
        return await signaling_error_handler(request, InvalidRequest())

    app.include_router(rooms_router)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
