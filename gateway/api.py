from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Optional
import logging

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from pyinstrument import Profiler

from gateway.domain.background_worker import BackgroundWorker
from gateway.domain.errors import DuplicateCorrelationIdError, InvalidRangeError
from gateway.domain.ledger import PaymentLedger
from gateway.domain.models import PaymentRequest, PaymentsSummary, parse_timestamp
from gateway.factories import close_components

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error-message": message})


def parse_query_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise InvalidRangeError("Invalid params") from e


def create_app(
    ledger: PaymentLedger,
    background_worker: Optional[BackgroundWorker] = None,
) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if background_worker is not None:
            await background_worker.start()
            logger.info("Background payment worker started")

        yield

        if background_worker is not None:
            await background_worker.stop()
            logger.info("Background payment worker stopped")

        await close_components(ledger, background_worker)

    app = FastAPI(lifespan=lifespan)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unexpected error in {request.method} {request.url.path}: {str(exc)}")
        return error_response(500, "Internal server error")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error in {request.method} {request.url.path}: {exc.errors()}")
        fields = sorted({str(error["loc"][-1]) for error in exc.errors() if error.get("loc")})
        message = f"Invalid or missing {', '.join(fields)}" if fields else "Invalid request body"
        return error_response(422, message)

    @app.exception_handler(DuplicateCorrelationIdError)
    async def duplicate_exception_handler(request: Request, exc: DuplicateCorrelationIdError):
        return error_response(409, str(exc))

    @app.exception_handler(InvalidRangeError)
    async def invalid_range_exception_handler(request: Request, exc: InvalidRangeError):
        logger.warning(f"Invalid range in {request.method} {request.url.path}: {exc}")
        return error_response(400, str(exc))

    @app.middleware("http")
    async def profile_request(request: Request, call_next):
        profiling = request.query_params.get("profile", False)
        if profiling:
            profiler = Profiler(interval=0.0001)
            profiler.start()
            response = await call_next(request)
            profiler.stop()
            return HTMLResponse(profiler.output_html())
        else:
            return await call_next(request)

    @app.post("/payments")
    async def create_payment(payment_request: PaymentRequest):
        await ledger.submit(payment_request)
        return JSONResponse(
            status_code=202,
            content={
                "message": "Payment accepted for processing",
                "correlationId": str(payment_request.correlationId),
            },
        )

    @app.get("/payments-summary", response_model=PaymentsSummary)
    async def payments_summary(
        from_: Annotated[Optional[str], Query(alias="from")] = None,
        to: Annotated[Optional[str], Query()] = None,
    ):
        # Dates are parsed here so a bad value is reported as a 400, not a 422
        return await ledger.query_by_range(
            parse_query_timestamp(from_), parse_query_timestamp(to)
        )

    @app.get("/health")
    async def health_check():
        """Simple health check endpoint for load balancer."""
        return {"status": "healthy"}

    return app
