"""
orderevents - order-event distribution and event-store pipeline.

Features:
- Topic fan-out of order and product events with eventType filtering
- Time-bounded event log keyed by subject and event type
- At-least-once queued billing and notification delivery with dead-letter queues
- Structured logging with request ids, Prometheus metrics, health checks
"""
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from . import __version__
from .config import get_settings
from .logging import setup_logging, get_logger
from .api.router import router
from .middleware import ErrorHandlerMiddleware, MetricsMiddleware, RequestIdMiddleware
from .metrics import get_metrics
from .health import HealthChecker
from .pipeline import get_pipeline

settings = get_settings()

setup_logging(json_output=settings.LOG_JSON, service_name="orderevents", level=settings.LOG_LEVEL)
logger = get_logger()

metrics = get_metrics()
pipeline = get_pipeline()
health_checker = HealthChecker(pipeline, service_name="orderevents", version=__version__)

app = FastAPI(
    title="orderevents",
    version=__version__,
    description="Order-event distribution and event-store pipeline",
)

# Last added runs first: request id, then metrics, then error mapping
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(MetricsMiddleware, metrics=metrics)
app.add_middleware(RequestIdMiddleware)

app.include_router(router)

metrics_app = make_asgi_app(registry=metrics.registry)
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health():
    """
    Liveness probe - basic health check.

    Returns 200 if service is running.
    """
    logger.debug("health_check_liveness")
    return health_checker.liveness()


@app.get("/health/ready")
async def health_ready():
    """
    Readiness probe.

    Returns:
        200: Event store and queues are reachable
        503: Service is not ready
    """
    logger.debug("health_check_readiness")
    result = await health_checker.readiness()
    status_code = 200 if result["status"] == "ready" else 503
    return JSONResponse(result, status_code=status_code)


@app.on_event("startup")
async def startup_event():
    """Log startup and start the queue consumers."""
    logger.info(
        "service_starting",
        version=__version__,
        env=settings.ENV,
        backend=settings.BACKEND,
        start_consumers=settings.START_CONSUMERS,
    )
    if settings.START_CONSUMERS:
        pipeline.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop consumers and release backends."""
    logger.info("service_stopping")
    await pipeline.stop()
    metrics.app_up.labels(service="orderevents", version=__version__).set(0)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orderevents.main:app",
        host="0.0.0.0",
        port=settings.SERVICE_PORT,
        reload=True,
    )
