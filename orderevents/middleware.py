"""
HTTP middleware: request ids, Prometheus metrics and structured errors.
"""
import uuid
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
import structlog
from .errors import StorageError, ValidationError

REQUEST_ID_HEADER = "x-request-id"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add request ids to all requests.

    - Extracts the request id from the X-Request-ID header if present
    - Generates a new UUID if not present
    - Binds it to the structlog context and request.state
    - Adds it to the response headers
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect HTTP metrics for Prometheus.

    - Records request count by method, path, status
    - Records request duration histogram
    - Tracks active requests
    """

    def __init__(self, app, metrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint to avoid recursion
        if request.url.path.startswith("/metrics"):
            return await call_next(request)

        self.metrics.http_requests_active.inc()
        start_time = time.time()
        logger = structlog.get_logger()

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            self.metrics.http_requests_total.labels(
                service=self.metrics.service_name,
                method=request.method,
                path=request.url.path,
                status=response.status_code,
            ).inc()
            self.metrics.http_request_duration.labels(
                service=self.metrics.service_name,
                method=request.method,
                path=request.url.path,
            ).observe(duration)

            logger.info(
                "http_request",
                http_status=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
            return response

        except Exception as e:
            duration = time.time() - start_time
            self.metrics.http_requests_total.labels(
                service=self.metrics.service_name,
                method=request.method,
                path=request.url.path,
                status=500,
            ).inc()
            logger.error(
                "http_request_error",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        finally:
            self.metrics.http_requests_active.dec()


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Maps pipeline errors to structured JSON responses."""

    async def dispatch(self, request: Request, call_next):
        log = structlog.get_logger()
        request_id = getattr(request.state, "request_id", None)
        try:
            return await call_next(request)
        except ValidationError as exc:
            log.warning("event.rejected", error=exc.message, path=request.url.path)
            return _error_response(422, exc, exc.message, request, request_id, details=exc.errors)
        except StorageError as exc:
            log.error("storage.unavailable", error=str(exc), path=request.url.path)
            return _error_response(503, exc, str(exc), request, request_id)
        except Exception as exc:
            log.error(
                "unhandled.exception",
                error=str(exc),
                error_type=exc.__class__.__name__,
                path=request.url.path,
                exc_info=True,
            )
            return _error_response(500, None, "An unexpected error occurred", request, request_id)


def _error_response(status_code, exc, message, request, request_id, details=None) -> JSONResponse:
    content = {
        "error": exc.__class__.__name__ if exc is not None else "InternalServerError",
        "message": message,
        "status_code": status_code,
        "request_id": request_id,
        "path": str(request.url.path),
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)
