import hashlib

import httpx
import pytest

from attestgate.core.attestation.platforms.play_integrity import (
    PLAY_INTEGRITY_URL,
    PlayIntegrityVerifier,
    validate_integrity_payload,
)
from attestgate.core.attestation.types import (
    PlatformVerificationError,
    VerificationFailure,
)
from attestgate.core.http_client import USER_AGENT
from tests.consts import TEST_KEY_ID, TEST_PACKAGE_NAME

MODULE = "attestgate.core.attestation.platforms.play_integrity"
TEST_CHALLENGE = "b" * 64
DECODE_URL = PLAY_INTEGRITY_URL.format(package_name=TEST_PACKAGE_NAME)


def _payload(
    request_details: dict | None = None,
    app_verdict: str = "PLAY_RECOGNIZED",
    device_verdicts: list[str] | None = None,
) -> dict:
    return {
        "requestDetails": request_details
        or {
            "requestPackageName": TEST_PACKAGE_NAME,
            "requestHash": hashlib.sha256(TEST_CHALLENGE.encode("utf-8")).hexdigest(),
        },
        "appIntegrity": {"appRecognitionVerdict": app_verdict},
        "deviceIntegrity": {
            "deviceRecognitionVerdict": ["MEETS_DEVICE_INTEGRITY"]
            if device_verdicts is None
            else device_verdicts
        },
    }


def _failure(payload: dict, require_strong: bool = False) -> VerificationFailure:
    with pytest.raises(PlatformVerificationError) as exc_info:
        validate_integrity_payload(payload, TEST_CHALLENGE, TEST_PACKAGE_NAME, require_strong)
    return exc_info.value.failure


@pytest.fixture
def verifier(mocker, http_client_cleanup):
    mocker.patch(
        f"{MODULE}._get_play_integrity_access_token", return_value="access-token"
    )
    return PlayIntegrityVerifier(
        package_name=TEST_PACKAGE_NAME,
        service_account_file="service_account.json",
    )


def test_validate_payload_with_request_hash():
    validate_integrity_payload(_payload(), TEST_CHALLENGE, TEST_PACKAGE_NAME, False)


def test_validate_payload_with_nonce():
    payload = _payload(
        {"requestPackageName": TEST_PACKAGE_NAME, "nonce": TEST_CHALLENGE}
    )
    validate_integrity_payload(payload, TEST_CHALLENGE, TEST_PACKAGE_NAME, False)


def test_validate_payload_wrong_package():
    payload = _payload({"requestPackageName": "org.other.app", "nonce": TEST_CHALLENGE})
    assert _failure(payload) == VerificationFailure.IDENTIFIER_MISMATCH


def test_validate_payload_challenge_mismatch():
    payload = _payload(
        {"requestPackageName": TEST_PACKAGE_NAME, "requestHash": "bad-hash"}
    )
    assert _failure(payload) == VerificationFailure.CHALLENGE_MISMATCH


def test_validate_payload_unrecognized_app():
    assert _failure(_payload(app_verdict="UNRECOGNIZED_VERSION")) == (
        VerificationFailure.UNTRUSTED_CHAIN
    )


def test_validate_payload_no_device_integrity():
    assert _failure(_payload(device_verdicts=[])) == VerificationFailure.INTEGRITY_TOO_WEAK


def test_validate_payload_strong_integrity_required():
    payload = _payload(device_verdicts=["MEETS_DEVICE_INTEGRITY"])
    assert _failure(payload, require_strong=True) == VerificationFailure.INTEGRITY_TOO_WEAK

    payload = _payload(
        device_verdicts=["MEETS_DEVICE_INTEGRITY", "MEETS_STRONG_INTEGRITY"]
    )
    validate_integrity_payload(payload, TEST_CHALLENGE, TEST_PACKAGE_NAME, True)


async def test_verify_attestation(verifier, httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=DECODE_URL,
        json={"tokenPayloadExternal": _payload()},
    )

    attested = await verifier.verify_attestation("integrity-token", TEST_CHALLENGE, TEST_KEY_ID)

    assert attested.device_id == TEST_KEY_ID
    assert attested.public_key_handle is None
    assert attested.initial_counter == 0
    assert attested.bound_identifier == TEST_PACKAGE_NAME

    request = httpx_mock.get_request()
    assert request.headers["Authorization"] == "Bearer access-token"
    assert request.headers["User-Agent"] == USER_AGENT
    assert b"integrity-token" in request.content


async def test_verify_attestation_missing_payload(verifier, httpx_mock):
    httpx_mock.add_response(method="POST", url=DECODE_URL, json={})

    with pytest.raises(PlatformVerificationError) as exc_info:
        await verifier.verify_attestation("integrity-token", TEST_CHALLENGE, TEST_KEY_ID)
    assert exc_info.value.failure == VerificationFailure.BAD_FORMAT


async def test_verify_attestation_wrong_package(verifier):
    with pytest.raises(PlatformVerificationError) as exc_info:
        await verifier.verify_attestation(
            "integrity-token", TEST_CHALLENGE, TEST_KEY_ID, "org.other.app"
        )
    assert exc_info.value.failure == VerificationFailure.IDENTIFIER_MISMATCH


async def test_verify_attestation_token_rejected_by_google(verifier, httpx_mock):
    httpx_mock.add_response(method="POST", url=DECODE_URL, status_code=400)

    with pytest.raises(PlatformVerificationError) as exc_info:
        await verifier.verify_attestation("integrity-token", TEST_CHALLENGE, TEST_KEY_ID)
    assert exc_info.value.failure == VerificationFailure.BAD_SIGNATURE


async def test_verify_attestation_google_unavailable(verifier, httpx_mock):
    httpx_mock.add_response(method="POST", url=DECODE_URL, status_code=503)

    with pytest.raises(PlatformVerificationError) as exc_info:
        await verifier.verify_attestation("integrity-token", TEST_CHALLENGE, TEST_KEY_ID)
    assert exc_info.value.failure == VerificationFailure.VENDOR_UNAVAILABLE


async def test_verify_attestation_network_error(verifier, httpx_mock):
    httpx_mock.add_exception(httpx.ConnectError("connection refused"))

    with pytest.raises(PlatformVerificationError) as exc_info:
        await verifier.verify_attestation("integrity-token", TEST_CHALLENGE, TEST_KEY_ID)
    assert exc_info.value.failure == VerificationFailure.VENDOR_UNAVAILABLE


async def test_verify_attestation_credentials_unavailable(mocker, http_client_cleanup):
    mocker.patch(
        f"{MODULE}._get_play_integrity_access_token",
        side_effect=FileNotFoundError("service_account.json"),
    )
    verifier = PlayIntegrityVerifier(TEST_PACKAGE_NAME, "service_account.json")

    with pytest.raises(PlatformVerificationError) as exc_info:
        await verifier.verify_attestation("integrity-token", TEST_CHALLENGE, TEST_KEY_ID)
    assert exc_info.value.failure == VerificationFailure.VENDOR_UNAVAILABLE


async def test_verify_assertion_unsupported(verifier):
    with pytest.raises(PlatformVerificationError) as exc_info:
        await verifier.verify_assertion("assertion", b"data", None)
    assert exc_info.value.failure == VerificationFailure.UNSUPPORTED
