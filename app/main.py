"""
Main FastAPI application entry point.
Initializes the application with middleware, routes, the WebSocket chat
gateway and OpenTelemetry tracing.
"""
import logging
from uuid import uuid4
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from core.config import settings
from core.errors import ChatError
from db.database import SessionLocal, engine, init_db, seed_db
from realtime.gateway import ChatGateway

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

from prometheus_fastapi_instrumentator import Instrumentator

from core.logging_config import configure_logging
configure_logging(service_name="estate-chat", level=settings.log_level, enable_json=settings.log_json)

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


def setup_tracing():
    """
    Configure OpenTelemetry distributed tracing.

    Spans cover HTTP requests, database queries and each WebSocket command.
    They are exported over OTLP/HTTP when ``OTLP_ENDPOINT`` is set and kept
    in-process otherwise (trace ids still appear in the logs).
    """
    resource = Resource.create({
        "service.name": "estate-chat",
        "service.version": APP_VERSION,
    })

    tracer_provider = TracerProvider(resource=resource)

    if settings.otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info(f"OpenTelemetry tracing exporting to {settings.otlp_endpoint}")
    else:
        logger.info("OpenTelemetry tracing initialized without exporter")

    trace.set_tracer_provider(tracer_provider)
    return tracer_provider


tracer_provider = setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Initializes the database and runs the chat gateway's background loops.
    """
    logger.info("Starting Estate Chat API...")
    init_db()
    if settings.seed_demo_data:
        seed_db()
        logger.info("Demo data seeded")

    gateway = ChatGateway.from_settings(settings, SessionLocal)
    app.state.chat_gateway = gateway
    gateway.start()

    yield

    logger.info("Shutting down Estate Chat API...")
    await gateway.shutdown()


app = FastAPI(
    title="Estate Chat API",
    description="Real-time chat between buyers, sellers and agents on property listings",
    version=APP_VERSION,
    lifespan=lifespan
)

FastAPIInstrumentor.instrument_app(app)
SQLAlchemyInstrumentor().instrument(engine=engine)

# Exposes /metrics with HTTP request metrics plus the chat counters
Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Metrics"])


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add unique request_id to each request.
    The request_id is included in logs for request tracing.
    """
    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id

        logger.info(
            f"[{request_id}] {request.method} {request.url.path} - "
            f"Client: {request.client.host if request.client else 'unknown'}",
            extra={"request_id": request_id}
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(f"[{request_id}] Response: {response.status_code}", extra={"request_id": request_id})
        return response


app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.reason})


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Missing required fields", "details": jsonable_errors(exc)}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"field": ".".join(str(part) for part in error.get("loc", ())), "message": error.get("msg")}
        for error in exc.errors()
    ]


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": "Estate Chat API",
        "version": APP_VERSION,
        "docs": "/docs",
        "health": "/health",
        "websocket": settings.ws_path
    }


from api.chat import router as chat_router
from api.health import router as health_router
from api.websocket import websocket_router

app.include_router(health_router)
app.include_router(chat_router)
app.include_router(websocket_router, tags=["WebSocket"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )
