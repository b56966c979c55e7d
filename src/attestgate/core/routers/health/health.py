from fastapi import APIRouter, Depends

from attestgate.core.attestation.verifier import AttestationVerifier
from attestgate.core.config import env
from attestgate.core.routers.attestation import get_verifier

router = APIRouter()


@router.get("/liveness", tags=["Health"])
async def liveness_probe():
    return {"status": "alive"}


@router.get("/readiness", tags=["Health"])
async def readiness_probe(verifier: AttestationVerifier = Depends(get_verifier)):
    challenge_store_status = verifier.challenge_store.check_status()
    key_store_status = verifier.key_store.check_status()
    return {
        "status": "connected"
        if challenge_store_status and key_store_status
        else "degraded",
        "storage_backend": env.STORAGE_BACKEND,
        "stores": {
            "challenges": "connected" if challenge_store_status else "offline",
            "device_keys": "connected" if key_store_status else "offline",
        },
        "attestation": {
            "enabled": verifier.is_enabled,
            "platforms": [platform.value for platform in verifier.enabled_platforms],
        },
    }
