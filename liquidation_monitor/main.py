import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .background_tasks import background_task_manager
from .config import settings
from .error_handling import MonitorError
from .routes import router

# stdlib logging backs structlog's filter_by_level
logging.basicConfig(
    format="%(message)s",
    stream=sys.stdout,
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def error_response(status_code: int, message: str, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": message,
            "error_type": error_type,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting Liquidation Monitor",
                version=__version__,
                background_monitoring=settings.ENABLE_BACKGROUND_MONITORING)

    if settings.ENABLE_BACKGROUND_MONITORING:
        await background_task_manager.start()

    yield

    logger.info("Shutting down Liquidation Monitor")
    await background_task_manager.stop()


app = FastAPI(
    title="Liquidation Monitor",
    description="Liquidation risk monitoring for DeFi borrow positions",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
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
async def log_requests(request: Request, call_next):
    start_time = time.time()

    logger.info("Request received",
                method=request.method,
                url=str(request.url),
                client_ip=request.client.host if request.client else "unknown")

    response = await call_next(request)
    process_time = time.time() - start_time

    logger.info("Request completed",
                method=request.method,
                url=str(request.url),
                status_code=response.status_code,
                process_time=round(process_time, 3))

    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(MonitorError)
async def monitor_exception_handler(request: Request, exc: MonitorError):
    """Pipeline errors: bad input 400, out-of-order operations 409"""
    logger.warning("Monitoring request rejected",
                   method=request.method,
                   url=str(request.url),
                   status_code=exc.status_code,
                   error=str(exc),
                   error_type=type(exc).__name__)

    return error_response(exc.status_code, str(exc), type(exc).__name__)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request"
    logger.warning("Invalid request body",
                   method=request.method,
                   url=str(request.url),
                   error=message)

    return error_response(400, message, "ValidationError")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors"""
    logger.error("Unhandled exception",
                 method=request.method,
                 url=str(request.url),
                 error=str(exc),
                 error_type=type(exc).__name__)

    return error_response(500, "Internal server error", type(exc).__name__)


app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint with service information"""
    return {
        "service": "Liquidation Monitor",
        "version": __version__,
        "description": "Health factor, liquidation price and buffer monitoring for DeFi positions",
        "status": "operational",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "endpoints": {
            "initialize": "/api/monitor/initialize",
            "discover": "/api/monitor/{wallet}/discover",
            "cycle": "/api/monitor/{wallet}/cycle",
            "status": "/api/monitor/status",
            "docs": "/docs"
        }
    }
