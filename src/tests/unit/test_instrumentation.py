from fastapi import FastAPI
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from attestgate.core.middleware import instrument_requests_middleware
from attestgate.core.middleware.instrumentation import REQUEST_ID_HEADER


def _app() -> FastAPI:
    app = FastAPI()
    app.middleware("http")(instrument_requests_middleware)

    @app.get("/devices/{key_id}")
    async def device(key_id: str):
        return {"key_id": key_id}

    return app


def _count(endpoint: str) -> float:
    return (
        REGISTRY.get_sample_value(
            "request_count_total", {"method": "GET", "endpoint": endpoint}
        )
        or 0
    )


def test_requests_are_counted_per_route_template():
    client = TestClient(_app())
    before = _count("/devices/{key_id}")

    assert client.get("/devices/a").status_code == 200
    assert client.get("/devices/b").status_code == 200

    assert _count("/devices/{key_id}") == before + 2
    assert _count("/devices/a") == 0


def test_unmatched_paths_share_one_label():
    client = TestClient(_app())
    before = _count("unmatched")

    assert client.get("/nowhere").status_code == 404

    assert _count("unmatched") == before + 1


def test_request_id_is_generated():
    response = TestClient(_app()).get("/devices/a")
    assert len(response.headers[REQUEST_ID_HEADER]) == 32


def test_request_id_is_echoed():
    response = TestClient(_app()).get(
        "/devices/a", headers={REQUEST_ID_HEADER: "req-1234"}
    )
    assert response.headers[REQUEST_ID_HEADER] == "req-1234"
