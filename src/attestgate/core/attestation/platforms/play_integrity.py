import hashlib
import hmac
from functools import lru_cache

import httpx
from fastapi.concurrency import run_in_threadpool
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from loguru import logger

from attestgate.core.attestation.platforms.base import PlatformVerifier
from attestgate.core.attestation.types import (
    AttestedKey,
    Platform,
    PlatformVerificationError,
    VerificationFailure,
)
from attestgate.core.http_client import get_vendor_client

PLAY_INTEGRITY_SCOPE = "https://www.googleapis.com/auth/playintegrity"
PLAY_INTEGRITY_URL = "https://playintegrity.googleapis.com/v1/{package_name}:decodeIntegrityToken"
ALLOWED_DEVICE_VERDICTS = {
    "MEETS_DEVICE_INTEGRITY",
    "MEETS_BASIC_INTEGRITY",
    "MEETS_STRONG_INTEGRITY",
}
STRONG_DEVICE_VERDICT = "MEETS_STRONG_INTEGRITY"


@lru_cache(maxsize=4)
def _get_service_account_credentials(service_account_file: str):
    return service_account.Credentials.from_service_account_file(
        service_account_file,
        scopes=[PLAY_INTEGRITY_SCOPE],
    )


def _get_play_integrity_access_token(service_account_file: str) -> str:
    credentials = _get_service_account_credentials(service_account_file)
    if not credentials.valid:
        credentials.refresh(Request())
    if not credentials.token:
        raise PlatformVerificationError(
            "failed to fetch Play Integrity access token",
            VerificationFailure.VENDOR_UNAVAILABLE,
        )
    return credentials.token


def validate_integrity_payload(
    payload: dict,
    challenge: str,
    package_name: str,
    require_strong_integrity: bool,
) -> None:
    """Check a decoded Play Integrity verdict against the expected request and integrity level."""
    request_details = payload.get("requestDetails", {})
    if request_details.get("requestPackageName") != package_name:
        raise PlatformVerificationError(
            "invalid package name", VerificationFailure.IDENTIFIER_MISMATCH
        )

    # Classic requests echo the nonce, standard requests echo a hash of it
    if "nonce" in request_details:
        expected, presented = challenge, request_details["nonce"]
    else:
        expected = hashlib.sha256(challenge.encode("utf-8")).hexdigest()
        presented = request_details.get("requestHash") or ""
    if not hmac.compare_digest(expected.encode(), str(presented).encode()):
        raise PlatformVerificationError(
            "challenge does not match token", VerificationFailure.CHALLENGE_MISMATCH
        )

    app_integrity = payload.get("appIntegrity", {})
    if app_integrity.get("appRecognitionVerdict") != "PLAY_RECOGNIZED":
        raise PlatformVerificationError(
            "app not recognized by Play", VerificationFailure.UNTRUSTED_CHAIN
        )

    device_integrity = payload.get("deviceIntegrity", {})
    device_verdicts = set(device_integrity.get("deviceRecognitionVerdict") or [])
    if require_strong_integrity:
        if STRONG_DEVICE_VERDICT not in device_verdicts:
            raise PlatformVerificationError(
                "strong integrity required", VerificationFailure.INTEGRITY_TOO_WEAK
            )
    elif not device_verdicts.intersection(ALLOWED_DEVICE_VERDICTS):
        raise PlatformVerificationError(
            "device integrity check failed", VerificationFailure.INTEGRITY_TOO_WEAK
        )


class PlayIntegrityVerifier(PlatformVerifier):
    """Android Play Integrity, verified by Google's decodeIntegrityToken endpoint."""

    platform = Platform.ANDROID

    def __init__(
        self,
        package_name: str,
        service_account_file: str,
        require_strong_integrity: bool = False,
        request_timeout: float = 10.0,
    ):
        self.package_name = package_name
        self.service_account_file = service_account_file
        self.require_strong_integrity = require_strong_integrity
        self.request_timeout = request_timeout

    async def _decode_integrity_token(self, integrity_token: str) -> dict:
        try:
            access_token = await run_in_threadpool(
                _get_play_integrity_access_token, self.service_account_file
            )
        except PlatformVerificationError:
            raise
        except Exception as e:
            raise PlatformVerificationError(
                f"service account credentials unavailable: {e}",
                VerificationFailure.VENDOR_UNAVAILABLE,
            ) from e

        client = get_vendor_client(self.platform.value, self.request_timeout)
        try:
            response = await client.post(
                PLAY_INTEGRITY_URL.format(package_name=self.package_name),
                headers={"Authorization": f"Bearer {access_token}"},
                json={"integrity_token": integrity_token},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            # Google answers 400 for tokens it cannot decrypt or verify
            raise PlatformVerificationError(
                f"decodeIntegrityToken returned {e.response.status_code}",
                VerificationFailure.BAD_SIGNATURE
                if e.response.status_code < 500
                else VerificationFailure.VENDOR_UNAVAILABLE,
            ) from e
        except httpx.HTTPError as e:
            raise PlatformVerificationError(
                f"Play Integrity service unavailable: {e}",
                VerificationFailure.VENDOR_UNAVAILABLE,
            ) from e
        return response.json()

    async def verify_attestation(
        self,
        evidence: str,
        challenge: str,
        key_id: str,
        bound_identifier: str | None = None,
    ) -> AttestedKey:
        if bound_identifier and bound_identifier != self.package_name:
            raise PlatformVerificationError(
                f"package {bound_identifier} is not {self.package_name}",
                VerificationFailure.IDENTIFIER_MISMATCH,
            )

        decoded = await self._decode_integrity_token(evidence)
        token_payload = decoded.get("tokenPayloadExternal") or decoded.get("tokenPayload")
        if not token_payload:
            raise PlatformVerificationError(
                "invalid Play Integrity token", VerificationFailure.BAD_FORMAT
            )
        validate_integrity_payload(
            token_payload, challenge, self.package_name, self.require_strong_integrity
        )

        logger.debug(f"Play Integrity verdict accepted for {self.package_name}")
        # Play Integrity issues no device key, the install is tracked by key id alone
        return AttestedKey(
            device_id=key_id,
            public_key_handle=None,
            initial_counter=0,
            bound_identifier=self.package_name,
        )

    async def verify_assertion(
        self,
        evidence: str,
        client_data: bytes,
        public_key_handle: str | None,
    ) -> int:
        raise PlatformVerificationError(
            "assertions are not available on Android", VerificationFailure.UNSUPPORTED
        )
