"""imagekv - FastAPI Application.

This module builds the web application.  :func:`create_app` takes the
configuration and, optionally, the inference runner and key-value store to
use, and returns a configured FastAPI instance.  No application object is
created at import time; uvicorn is started in factory mode by :func:`main`.

Architecture
------------
- **Pipeline**: a :class:`~imagekv.core.pipeline.GenerationPipeline` is built
  once per app and stored on ``app.state``.  Route handlers only translate
  between HTTP and pipeline calls.
- **Errors**: every :class:`~imagekv.core.errors.ImageKVError` is converted to
  a ``{"error", "detail"}`` JSON body with the error's status code, as are
  routing errors (unknown path, method not allowed).  Any other
  exception is caught by the request middleware and answered with a generic
  500, so a bad request never takes the process down.
- **Headers**: the request middleware adds the security headers to every
  response, including errors.  CORS is restricted to
  ``config.allowed_origins``.
- **Lifecycle**: runner and store network clients are closed on shutdown.

Endpoints
---------
========  ======================  ===================================
Method    Path                    Purpose
========  ======================  ===================================
GET       ``/``                   Liveness probe
POST      ``/generate``           Generate, encode and store an image
GET       ``/image/{userId}``     Fetch the stored image
DELETE    ``/image/{userId}``     Delete the stored image
========  ======================  ===================================

Usage
-----
CLI (installed entry point)::

    imagekv

Direct invocation::

    python -m imagekv.api.main
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from imagekv import __version__
from imagekv.api.models import (
    ErrorResponse,
    GenerateResponse,
    HealthResponse,
    ImageResponse,
    MessageResponse,
)
from imagekv.core.config import ImageKVConfig
from imagekv.core.errors import ImageKVError, ValidationError
from imagekv.core.inference import InferenceRunner, build_runner
from imagekv.core.pipeline import GenerationPipeline
from imagekv.core.storage import KeyValueStore, build_store
from imagekv.core.validation import BODY_REQUIRED, USER_ID_REQUIRED

logger = logging.getLogger(__name__)

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _error_body(error: str, detail: str | None = None) -> dict:
    return ErrorResponse(error=error, detail=detail).model_dump(exclude_none=True)


def create_app(
    config: ImageKVConfig | None = None,
    *,
    runner: InferenceRunner | None = None,
    store: KeyValueStore | None = None,
) -> FastAPI:
    """Build a configured FastAPI application.

    Args:
        config: Service configuration.  Loaded from the environment when
            omitted.
        runner: Inference backend.  Built from ``config.inference_backend``
            when omitted.
        store: Key-value backend.  Built from ``config.store_backend`` when
            omitted.

    Returns:
        The FastAPI application.
    """
    config = config or ImageKVConfig()
    runner = runner if runner is not None else build_runner(config)
    store = store if store is not None else build_store(config)
    pipeline = GenerationPipeline(config, runner=runner, store=store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Close runner and store network clients on shutdown."""
        logger.info(
            f"imagekv {__version__} ready (inference: {getattr(runner, 'name', None)}, "
            f"store: {getattr(store, 'name', None)})"
        )

        yield  # Application runs here.

        if runner is not None:
            await runner.aclose()
        if store is not None:
            await store.aclose()
        logger.info("Backends closed on shutdown.")

    app = FastAPI(
        title="imagekv",
        description="Prompt-to-image generation with key-value storage.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.pipeline = pipeline

    # -----------------------------------------------------------------------
    # Middleware.
    # -----------------------------------------------------------------------

    async def guard_requests(request: Request, call_next):
        """Log each request, add security headers, and catch unhandled errors."""
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled error: {e}", exc_info=True)
            response = JSONResponse(status_code=500, content=_error_body("Internal server error", str(e)))

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = config.frame_options
        response.headers["Referrer-Policy"] = config.referrer_policy
        response.headers["Content-Security-Policy"] = config.content_security_policy

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)"
        )
        return response

    app.middleware("http")(guard_requests)

    # CORS wraps the guard, so error responses carry CORS headers too.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
        max_age=config.cors_max_age,
    )

    @app.exception_handler(ImageKVError)
    async def handle_imagekv_error(request: Request, exc: ImageKVError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message} ({exc.detail})")
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.detail))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    # -----------------------------------------------------------------------
    # Routes.
    # -----------------------------------------------------------------------

    @app.get("/", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Liveness probe."""
        return HealthResponse(status="ok")

    @app.post(
        "/generate",
        response_model=GenerateResponse,
        response_model_exclude_none=True,
        responses=_ERROR_RESPONSES,
    )
    async def generate(request: Request) -> GenerateResponse:
        """Generate an image for ``{"prompt", "userId"}`` and store it.

        Returns the full data URI, or a short preview when
        ``config.response_mode`` is ``"preview"``.

        Raises:
            ValidationError: 400 for an invalid body.
            UpstreamError: 500 when inference fails.
            StorageError: 500 when storing fails or a backend is missing.
        """
        try:
            body = await request.json()
        except ValueError as e:
            raise ValidationError(BODY_REQUIRED, detail=str(e)) from e

        result = await request.app.state.pipeline.generate(body)

        if config.response_mode == "preview":
            return GenerateResponse(user_id=result.user_id, preview=result.preview(config.preview_length))
        return GenerateResponse(user_id=result.user_id, image=result.image)

    @app.get("/image", include_in_schema=False)
    @app.get("/image/", include_in_schema=False)
    @app.delete("/image", include_in_schema=False)
    @app.delete("/image/", include_in_schema=False)
    async def missing_user_id() -> None:
        raise ValidationError(USER_ID_REQUIRED)

    @app.get("/image/{user_id:path}", response_model=ImageResponse, responses=_ERROR_RESPONSES)
    async def get_image(user_id: str, request: Request) -> ImageResponse:
        """Return the stored image for *user_id* as a data URI.

        Raises:
            ValidationError: 400 if the id is blank.
            NotFoundError: 404 if nothing is stored.
        """
        image = await request.app.state.pipeline.fetch(user_id)
        return ImageResponse(image=image)

    @app.delete(
        "/image/{user_id:path}", response_model=MessageResponse, responses=_ERROR_RESPONSES
    )
    async def delete_image(user_id: str, request: Request) -> MessageResponse:
        """Delete the stored image for *user_id*.  Succeeds even if none exists."""
        key = await request.app.state.pipeline.delete(user_id)
        return MessageResponse(message=f"Image for {key} deleted")

    return app


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Host, port and log level come from ``IMAGEKV_SERVER_HOST``,
    ``IMAGEKV_SERVER_PORT`` and ``IMAGEKV_LOG_LEVEL``.  Defaults to
    ``0.0.0.0:8787``.

    This function is registered as the ``imagekv`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    config = ImageKVConfig()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    uvicorn.run(
        "imagekv.api.main:create_app",
        factory=True,
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
