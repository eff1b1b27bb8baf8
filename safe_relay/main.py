import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import health, safe, storage, websocket
from .api.deps import RelayServices
from .config import settings
from .core.errors import ErrorKind, RelayError
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware

logger = logging.getLogger(__name__)


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.details}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({exc.kind.value}): {exc.details}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=ErrorKind.VALIDATION.http_status,
        content={"error": "Invalid request", "details": details, "kind": ErrorKind.VALIDATION.value},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=ErrorKind.UPSTREAM.http_status,
        content={"error": "Internal error", "details": str(exc), "kind": ErrorKind.UPSTREAM.value},
    )


def create_app(services: Optional[RelayServices] = None) -> FastAPI:
    """Build the relay app around ``services`` (defaults come from settings)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        logger.info(
            f"Safe relay starting, relayer key {'configured' if app.state.services.has_relayer_key else 'missing'}"
        )
        yield
        await app.state.services.close()

    app = FastAPI(
        title="Safe Relay API",
        description="Gasless Safe multisig relay with session keys and transaction status push",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services or RelayServices.from_settings()

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(health.router, tags=["Health"])
    app.include_router(safe.router, tags=["Safe"])
    app.include_router(storage.router, tags=["Storage"])
    app.include_router(websocket.router)

    @app.get("/")
    async def root():
        return {
            "name": "Safe Relay API",
            "version": "0.1.0",
            "health": "/healthz",
            "websocket": settings.ws_path,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "safe_relay.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
