"""Maps domain errors onto JSON responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from libs.common.logging import get_logger
from services.orders_service.errors import OrderServiceError

logger = get_logger(__name__)


async def order_service_error_handler(request: Request, exc: OrderServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def add_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OrderServiceError, order_service_error_handler)
