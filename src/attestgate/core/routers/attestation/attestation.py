from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from attestgate.core.attestation.types import (
    AssertionData,
    StorageError,
    VerificationResult,
)
from attestgate.core.attestation.verifier import AttestationVerifier
from attestgate.core.classes import AssertionRequest, AttestationRequest, ChallengeRequest
from attestgate.core.config import ERROR_RESPONSES
from attestgate.core.routers.attestation.middleware import (
    device_attestation_auth,
    get_verifier,
    raise_for_result,
)
from attestgate.core.utils import b64decode_safe

router = APIRouter()


@router.post("/challenge", tags=["Attestation"])
async def get_challenge(
    request: ChallengeRequest,
    verifier: AttestationVerifier = Depends(get_verifier),
):
    if not request.identifier:
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_request", "message": "Identifier is required"},
        )
    try:
        challenge = await verifier.generate_challenge(request.identifier)
    except StorageError as e:
        logger.error(f"Failed to generate challenge: {e}")
        raise HTTPException(
            status_code=500,
            detail={"error": "challenge_error", "message": "Failed to generate challenge"},
        )
    return {"challenge": challenge}


@router.post("/attest", tags=["Attestation"], responses=ERROR_RESPONSES)
async def attest(
    request: AttestationRequest,
    verifier: AttestationVerifier = Depends(get_verifier),
):
    result = await verifier.verify(request.to_attestation_data())
    raise_for_result(result)
    return {"status": "success"}


@router.post("/assert", tags=["Attestation"], responses=ERROR_RESPONSES)
async def assert_key(
    request: AssertionRequest,
    verifier: AttestationVerifier = Depends(get_verifier),
):
    client_data = b64decode_safe(request.client_data, "client_data")
    result = await verifier.verify_assertion(
        AssertionData(
            assertion=request.assertion,
            client_data=client_data,
            key_id=request.key_id,
        )
    )
    raise_for_result(result)
    return {"status": "success", "key_id": request.key_id}


# Auth subrequest target for a fronting proxy, checks the X-Attestation-* headers
@router.get("/verify", tags=["Attestation"], responses=ERROR_RESPONSES)
async def verify_device(
    result: VerificationResult = Depends(device_attestation_auth),
):
    return {
        "status": "success",
        "key_id": result.key_id,
        "platform": result.platform.value if result.platform else None,
    }
