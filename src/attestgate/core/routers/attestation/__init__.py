from attestgate.core.routers.attestation.attestation import router as attestation_router
from attestgate.core.routers.attestation.middleware import (
    device_attestation_auth,
    get_verifier,
    raise_for_result,
)

__all__ = [
    "attestation_router",
    "device_attestation_auth",
    "get_verifier",
    "raise_for_result",
]
