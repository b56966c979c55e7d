import time
import uuid

from fastapi import Request

from attestgate.core.logger import logger
from attestgate.core.prometheus_metrics import metrics
from attestgate.core.utils import mask_string

REQUEST_ID_HEADER = "X-Request-ID"
KEY_ID_HEADER = "X-Attestation-Key-ID"


def _endpoint(request: Request) -> str:
    # Route templates keep the endpoint label bounded, unmatched paths share one label
    route = request.scope.get("route")
    return route.path if route else "unmatched"


async def instrument_requests_middleware(request: Request, call_next):
    """
    Tags each request with a request id and the masked device key id, then
    records latency and outcome per endpoint once the route is resolved.
    """
    start_time = time.perf_counter()
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    metrics.in_progress_requests.inc()

    with logger.contextualize(
        request_id=request_id,
        key_id=mask_string(request.headers.get(KEY_ID_HEADER)),
    ):
        try:
            response = await call_next(request)
        except Exception as e:
            metrics.request_error_count_total.labels(
                method=request.method, error_type=type(e).__name__
            ).inc()
            logger.error(
                "Request failed with exception",
                extra={
                    "request_method": request.method,
                    "endpoint": _endpoint(request),
                    "latency_ms": (time.perf_counter() - start_time) * 1000,
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise
        finally:
            metrics.in_progress_requests.dec()

        duration = time.perf_counter() - start_time
        endpoint = _endpoint(request)
        metrics.request_count_total.labels(method=request.method, endpoint=endpoint).inc()
        metrics.request_duration_seconds.labels(
            method=request.method, endpoint=endpoint
        ).observe(duration)
        metrics.response_status_codes.labels(status_code=response.status_code).inc()
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "Request finished",
            extra={
                "request_method": request.method,
                "endpoint": endpoint,
                "status_code": response.status_code,
                "latency_ms": duration * 1000,
            },
        )
        return response
