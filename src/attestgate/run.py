import asyncio
import contextlib
from contextlib import asynccontextmanager

import sentry_sdk
import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exception_handlers import http_exception_handler
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from attestgate.core.config import env
from attestgate.core.http_client import close_vendor_clients
from attestgate.core.logger import logger, setup_logger
from attestgate.core.middleware import instrument_requests_middleware
from attestgate.core.prometheus_metrics import metrics
from attestgate.core.routers.attestation import attestation_router
from attestgate.core.routers.health import health_router
from attestgate.core.services import build_verifier, purge_challenges_periodically

tags_metadata = [
    {"name": "Health", "description": "Health check endpoints."},
    {"name": "Metrics", "description": "Prometheus metrics endpoints."},
    {
        "name": "Attestation",
        "description": "Challenge issuance, device attestation and assertion endpoints.",
    },
]

verifier, attestation_pg = build_verifier()


@asynccontextmanager
async def lifespan(app: FastAPI):
    attestation_pg_connected = False
    purger = None
    try:
        if attestation_pg is not None:
            await attestation_pg.connect()
            attestation_pg_connected = True
        app.state.verifier = verifier
        purger = asyncio.create_task(
            purge_challenges_periodically(
                verifier, env.CHALLENGE_PURGE_INTERVAL_SECONDS
            )
        )
        yield
    finally:
        if purger is not None:
            purger.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await purger
        await close_vendor_clients()
        if attestation_pg_connected:
            await attestation_pg.disconnect()


sentry_sdk.init(dsn=env.SENTRY_DSN, send_default_pii=False)

app = FastAPI(
    title="attestgate",
    description="Verifies App Attest and Play Integrity evidence and guards against replayed device assertions.",
    version="1.0.0",
    docs_url="/api/docs",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)
app.state.verifier = verifier

app.middleware("http")(instrument_requests_middleware)


@app.get("/metrics", tags=["Metrics"])
async def get_metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(health_router, prefix="/health")
app.include_router(attestation_router, prefix="/attestation")


@app.exception_handler(HTTPException)
async def log_and_handle_http_exception(request: Request, exc: HTTPException):
    """Logs HTTPExceptions"""
    metrics.request_error_count_total.labels(
        method=request.method, error_type="HTTPError"
    ).inc()
    logger.error(
        "HTTPException occurred",
        extra={
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
        },
    )
    return await http_exception_handler(request, exc)


def main():
    setup_logger()
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=env.PORT,
        timeout_keep_alive=10,
        log_config=None,
        log_level=None,
    )


if __name__ == "__main__":
    main()
