"""
Pooled outbound clients for attestation vendors.

Each vendor gets its own `httpx.AsyncClient` so a slow vendor cannot exhaust
the connection pool of another. Clients are created lazily on first use and
closed together from the application lifespan.
"""

import httpx

from attestgate.core.config import env

USER_AGENT = "attestgate/1.0.0"

_clients: dict[str, httpx.AsyncClient] = {}


def _vendor_timeout(read_timeout: float) -> httpx.Timeout:
    # Connect and pool waits are capped by the vendor's read budget
    return httpx.Timeout(
        connect=min(env.HTTPX_CONNECT_TIMEOUT_SECONDS, read_timeout),
        read=read_timeout,
        write=env.HTTPX_WRITE_TIMEOUT_SECONDS,
        pool=min(env.HTTPX_POOL_TIMEOUT_SECONDS, read_timeout),
    )


def get_vendor_client(vendor: str, read_timeout: float) -> httpx.AsyncClient:
    client = _clients.get(vendor)
    if client is None or client.is_closed:
        client = httpx.AsyncClient(
            timeout=_vendor_timeout(read_timeout),
            limits=httpx.Limits(
                max_connections=env.HTTPX_MAX_CONNECTIONS,
                max_keepalive_connections=env.HTTPX_MAX_KEEPALIVE_CONNECTIONS,
                keepalive_expiry=env.HTTPX_KEEPALIVE_EXPIRY_SECONDS,
            ),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        )
        _clients[vendor] = client
    return client


async def close_vendor_clients() -> None:
    while _clients:
        _, client = _clients.popitem()
        await client.aclose()
