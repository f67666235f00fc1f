"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that sets up
logging, CORS middleware, the processing router and the error mapping,
and exposes a health check endpoint reporting the GDAL version.

Example:
    The application can be run with uvicorn:
        $ uvicorn geoproc.main:app --reload

    Or through the console script, honouring HOST and PORT:
        $ geoproc
"""

from typing import Any

import fastapi
import uvicorn
from fastapi import exceptions, responses
from fastapi.middleware import cors
from loguru import logger

from geoproc.api import process
from geoproc.core import config, errors
from geoproc.core import logging as logging_config
from geoproc.utils import gdal_helpers


async def _processing_error_response(
    request: fastapi.Request,
    exc: errors.ProcessingError,
) -> responses.JSONResponse:
    """Render a ProcessingError with the status code it carries."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        content: dict[str, Any] = {
            "error": "Processing failed",
            "details": exc.message,
        }
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        content = {"error": exc.message}
        if isinstance(exc, errors.LayerNotFoundError):
            content["available_layers"] = exc.available
    return responses.JSONResponse(status_code=exc.status_code, content=content)


async def _validation_error_response(
    request: fastapi.Request,
    exc: exceptions.RequestValidationError,
) -> responses.JSONResponse:
    """Report malformed form fields as a 400 client error."""
    details = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return responses.JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": details},
    )


async def _unexpected_error_response(
    request: fastapi.Request,
    exc: Exception,
) -> responses.JSONResponse:
    logger.exception(f"{request.method} {request.url.path} crashed")
    return responses.JSONResponse(
        status_code=500,
        content={"error": "Processing failed", "details": str(exc)},
    )


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures the loguru sink, includes the processing router, installs
    CORS middleware and exception handlers, and adds a health check
    endpoint. CORS origins are configured from settings.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    logging_config.configure_logging(settings.log_level)
    app = fastapi.FastAPI(
        title="Geospatial Processing Service",
        version="0.1.0",
    )

    app.include_router(process.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(
        errors.ProcessingError,
        _processing_error_response,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        exceptions.RequestValidationError,
        _validation_error_response,  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, _unexpected_error_response)

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "OK" and the GDAL release name.
        """
        return {
            "status": "OK",
            "toolkit_version": gdal_helpers.toolkit_version(),
        }

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    settings = config.get_settings()
    logger.info(f"Listening on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)
