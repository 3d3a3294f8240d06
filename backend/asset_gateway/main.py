import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from asset_gateway.api.routers import uploads as uploads_router
from asset_gateway.core.config import Settings, get_settings
from asset_gateway.core.errors import ClientDisconnected, StoreUnavailable, UploadError
from asset_gateway.core.logging_config import configure_logging
from asset_gateway.schemas import ErrorResponse
from asset_gateway.services.storage import ObjectStore, build_object_store

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Authorization"
CORS_MAX_AGE = "3600"
CLIENT_CLOSED_REQUEST = 499


def _error_response(status_code: int, message: str, details: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=message, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(UploadError)
    async def upload_error_handler(request: Request, exc: UploadError) -> JSONResponse:
        if isinstance(exc, StoreUnavailable):
            # backend internals stay in the logs
            return _error_response(exc.status_code, exc.message)
        return _error_response(exc.status_code, exc.message, exc.details)

    @app.exception_handler(ClientDisconnected)
    async def disconnected_handler(request: Request, exc: ClientDisconnected) -> Response:
        logger.info("Client closed request before upload completed")
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))


def register_cors(app: FastAPI, allow_origin: str) -> None:
    @app.middleware("http")
    async def cors_headers(request: Request, call_next):
        try:
            response = await call_next(request)
        except Exception:
            # unexpected errors still leave with CORS headers
            logger.exception("Unhandled error while processing %s %s", request.method, request.url.path)
            response = _error_response(StoreUnavailable.status_code, StoreUnavailable.default_message)
        response.headers["Access-Control-Allow-Origin"] = allow_origin
        response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
        response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
        response.headers["Access-Control-Max-Age"] = CORS_MAX_AGE
        return response


def create_app(store: ObjectStore | None = None, settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "object_store", None) is None:
            app.state.object_store = build_object_store(settings)
        yield

    app = FastAPI(
        debug=settings.debug,
        title="Asset Upload Gateway",
        lifespan=lifespan,
    )
    app.state.object_store = store

    register_error_handlers(app)
    register_cors(app, settings.cors_allow_origin)
    app.include_router(uploads_router.router)

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "asset_gateway.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
