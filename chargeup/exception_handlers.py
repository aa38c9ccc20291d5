"""
Exception handlers.

Register these on a FastAPI app instance via `register_exception_handlers(app)`.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from .core.env import is_local_env
from .core.errors import ChargeFlowError, Unavailable

logger = logging.getLogger("chargeup")


async def charge_flow_error_handler(request: Request, exc: ChargeFlowError):
    """Render taxonomy errors as {"error": code, "message": msg}."""
    if isinstance(exc, Unavailable):
        logger.warning(f"{request.method} {request.url.path} unavailable: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)

    # In production, don't leak internal error details to clients
    if is_local_env():
        message = f"Internal server error: {exc}"
    else:
        message = "Internal server error"
    return JSONResponse(status_code=500, content={"error": "internal", "message": message})


def register_exception_handlers(app):
    """Register all exception handlers on the given FastAPI app."""
    app.add_exception_handler(ChargeFlowError, charge_flow_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
