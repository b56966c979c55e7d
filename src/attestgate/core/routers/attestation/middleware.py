from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request
from loguru import logger

from attestgate.core.attestation.types import (
    AssertionData,
    AttestationData,
    AttestationErrorKind,
    Platform,
    VerificationResult,
)
from attestgate.core.attestation.verifier import AttestationVerifier
from attestgate.core.utils import b64decode_safe, mask_string

ERROR_STATUS = {
    AttestationErrorKind.ATTESTATION_REQUIRED: (
        401,
        "Device attestation is required for this request",
    ),
    AttestationErrorKind.UNSUPPORTED_PLATFORM: (
        400,
        "Unsupported platform for attestation",
    ),
    AttestationErrorKind.INVALID_ATTESTATION: (
        403,
        "Device attestation verification failed",
    ),
    AttestationErrorKind.INVALID_ASSERTION: (403, "Invalid assertion"),
    AttestationErrorKind.KEY_NOT_FOUND: (
        401,
        "Attestation key not found, re-attestation required",
    ),
    AttestationErrorKind.REPLAY_DETECTED: (403, "Assertion replay detected"),
}


def get_verifier(request: Request) -> AttestationVerifier:
    return request.app.state.verifier


def raise_for_result(result: VerificationResult) -> None:
    """Translate a rejected verification into the client facing HTTP error."""
    if result.is_verified:
        return
    status_code, message = ERROR_STATUS[result.error]
    raise HTTPException(
        status_code=status_code,
        detail={"error": result.error.value, "message": message},
    )


async def device_attestation_auth(
    verifier: Annotated[AttestationVerifier, Depends(get_verifier)],
    x_attestation: Annotated[str | None, Header()] = None,
    x_platform: Annotated[str | None, Header()] = None,
    x_attestation_key_id: Annotated[str | None, Header()] = None,
    x_attestation_challenge: Annotated[str | None, Header()] = None,
    x_attestation_assertion: Annotated[str | None, Header()] = None,
    x_attestation_client_data: Annotated[str | None, Header()] = None,
) -> VerificationResult:
    """
    Guards a route with device attestation headers.

    An assertion (X-Attestation-Assertion, X-Attestation-Key-ID and base64
    X-Attestation-Client-Data) takes precedence over an initial attestation
    (X-Attestation, X-Platform, X-Attestation-Key-ID, X-Attestation-Challenge).
    Without either, an enabled verifier answers attestation_required; a disabled
    one lets every request through.
    """
    if x_attestation_assertion:
        try:
            client_data = b64decode_safe(
                x_attestation_client_data or "", "x-attestation-client-data"
            )
        except HTTPException:
            if not verifier.is_enabled:
                return VerificationResult.verified()
            logger.warning(
                f"Undecodable client data for key {mask_string(x_attestation_key_id)}"
            )
            raise_for_result(
                VerificationResult.rejected(
                    AttestationErrorKind.INVALID_ASSERTION, x_attestation_key_id
                )
            )
        result = await verifier.verify_assertion(
            AssertionData(
                assertion=x_attestation_assertion,
                client_data=client_data,
                key_id=x_attestation_key_id or "",
            )
        )
    elif x_attestation:
        result = await verifier.verify(
            AttestationData(
                platform=Platform.parse(x_platform),
                token=x_attestation,
                key_id=x_attestation_key_id or "",
                challenge=x_attestation_challenge or "",
            )
        )
    else:
        result = await verifier.verify(None)

    raise_for_result(result)
    return result
