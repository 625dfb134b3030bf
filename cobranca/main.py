"""
Collections engine - FastAPI application.
Installment schedules, payment postings and delinquency reports for multiple companies.
Features strict input validation, audit logging and request tracing.
"""
from typing import Callable, Awaitable, Dict
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import time
from uuid import uuid4

from cobranca.core.config import settings
from cobranca.core.database import init_db
from cobranca.core.exceptions import (
    CobrancaError,
    InvalidInstallmentStateError,
    NotFoundError,
    PaymentExceedsBalanceError,
)
from cobranca.core.logger import logger
from cobranca.simulacao.router import router as simulacao_router
from cobranca.contratos.router import router as contratos_router
from cobranca.parcelas.router import router as parcelas_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management (startup/shutdown hooks)."""
    logger.info(f"Initializing {settings.APP_NAME} v{settings.VERSION}")
    init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down application")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Contract installment engine: schedules, payments, cancellations and overdue reports.",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_correlation_id(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    """
    Middleware for distributed tracing.
    Injects a Correlation ID into the request context and propagates it to the response headers.
    """
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid4()))
    request.state.correlation_id = correlation_id

    start_time = time.time()

    logger.info(
        f"Request: {request.method} {request.url.path}",
        extra={"correlation_id": correlation_id}
    )

    response = await call_next(request)

    process_time = time.time() - start_time
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Process-Time"] = str(process_time)

    logger.info(
        f"Response: {response.status_code} | {process_time:.3f}s",
        extra={"correlation_id": correlation_id}
    )

    return response


app.include_router(simulacao_router, prefix="/simulacao", tags=["Simulation"])
app.include_router(contratos_router, prefix="/empresas", tags=["Contracts"])
app.include_router(parcelas_router, prefix="/empresas", tags=["Installments"])


@app.get("/health", tags=["Health"])
def health_check() -> Dict[str, str]:
    """
    Liveness probe endpoint for orchestration systems.
    """
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.VERSION
    }


ERROR_STATUS = {
    NotFoundError: 404,
    InvalidInstallmentStateError: 409,
    PaymentExceedsBalanceError: 400,
}


@app.exception_handler(CobrancaError)
async def domain_exception_handler(request: Request, exc: CobrancaError):
    """Maps engine errors to HTTP status codes. Not-found never reveals whether another company owns the record."""
    correlation_id = getattr(request.state, "correlation_id", "N/A")
    status_code = ERROR_STATUS.get(type(exc), 400)

    logger.info(
        f"{type(exc).__name__}: {str(exc)}",
        extra={"correlation_id": correlation_id}
    )

    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "correlation_id": correlation_id}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    correlation_id = getattr(request.state, "correlation_id", "N/A")

    logger.info(
        f"HTTPException: {exc.status_code}",
        extra={"correlation_id": correlation_id}
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "correlation_id": correlation_id}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception barrier.
    Captures unhandled exceptions (including store failures), logs stack traces with Correlation IDs,
    and returns a sanitized 500 Internal Server Error response.
    """
    correlation_id = getattr(request.state, "correlation_id", "N/A")

    logger.error(
        f"Unhandled exception: {str(exc)}",
        exc_info=True,
        extra={"correlation_id": correlation_id}
    )

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal Server Error",
            "correlation_id": correlation_id
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "cobranca.main:app",
        host="0.0.0.0",  # nosec
        port=8000,
        reload=settings.DEBUG
    )
