import base64
import binascii
import hashlib
from functools import lru_cache
from pathlib import Path

import cbor2
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.base import load_pem_x509_certificate
from fastapi.concurrency import run_in_threadpool
from loguru import logger
from pyattest.assertion import Assertion
from pyattest.attestation import Attestation
from pyattest.configs.apple import AppleConfig

from attestgate.core.attestation.platforms.base import PlatformVerifier
from attestgate.core.attestation.types import (
    AttestedKey,
    Platform,
    PlatformVerificationError,
    VerificationFailure,
)

# authData layout: rpIdHash(32) | flags(1) | signCount(4) | aaguid(16) | credIdLen(2) | credId | COSE key
SIGN_COUNT_SLICE = slice(33, 37)
ATTESTED_CREDENTIAL_OFFSET = 37 + 16 + 2

# pyattest exception names mapped to our failure classification
PYATTEST_FAILURES = {
    "InvalidNonceException": VerificationFailure.CHALLENGE_MISMATCH,
    "InvalidCertificateChainException": VerificationFailure.UNTRUSTED_CHAIN,
    "InvalidAppIdException": VerificationFailure.IDENTIFIER_MISMATCH,
    "InvalidKeyIdException": VerificationFailure.IDENTIFIER_MISMATCH,
    "InvalidCredentialIdException": VerificationFailure.IDENTIFIER_MISMATCH,
}


@lru_cache(maxsize=4)
def _load_root_ca(root_ca_path: str) -> bytes:
    """Load the Apple App Attestation root CA as PEM bytes."""
    path = Path(root_ca_path)
    if not path.exists():
        raise FileNotFoundError(f"App Attest root CA certificate not found at {path}")
    root_ca = load_pem_x509_certificate(path.read_bytes())
    return root_ca.public_bytes(serialization.Encoding.PEM)


def read_sign_count(auth_data: bytes) -> int:
    if len(auth_data) < SIGN_COUNT_SLICE.stop:
        raise PlatformVerificationError(
            "authenticator data too short", VerificationFailure.BAD_FORMAT
        )
    return int.from_bytes(auth_data[SIGN_COUNT_SLICE], "big")


def cose_key_to_pem(auth_data: bytes, credential_id: bytes) -> str:
    """Extract the attested P-256 COSE key that follows the credential id and encode it as PEM."""
    cose_key_obj = cbor2.loads(auth_data[ATTESTED_CREDENTIAL_OFFSET + len(credential_id) :])
    # COSE Key Map for EC2 keys: 1=kty, -1=crv, -2=x, -3=y
    if cose_key_obj.get(1) != 2 or cose_key_obj.get(-1) != 1:  # kty=EC2, crv=P-256
        raise PlatformVerificationError(
            "public key is not a P-256 elliptic curve key",
            VerificationFailure.BAD_FORMAT,
        )
    public_key = ec.EllipticCurvePublicNumbers(
        x=int.from_bytes(cose_key_obj.get(-2), "big"),
        y=int.from_bytes(cose_key_obj.get(-3), "big"),
        curve=ec.SECP256R1(),
    ).public_key()
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")


def _b64decode(value: str, what: str) -> bytes:
    try:
        normalized = value.strip().rstrip("=").replace("-", "+").replace("_", "/")
        return base64.b64decode(normalized + "=" * (-len(normalized) % 4), validate=True)
    except (binascii.Error, ValueError) as e:
        raise PlatformVerificationError(
            f"{what} is not base64: {e}", VerificationFailure.BAD_FORMAT
        ) from e


def _classify(error: Exception, default: VerificationFailure) -> PlatformVerificationError:
    if isinstance(error, PlatformVerificationError):
        return error
    failure = PYATTEST_FAILURES.get(type(error).__name__, default)
    return PlatformVerificationError(f"{type(error).__name__}: {error}", failure)


class AppAttestVerifier(PlatformVerifier):
    """iOS App Attest, verified locally against Apple's App Attestation root CA with pyattest."""

    platform = Platform.IOS

    def __init__(self, team_id: str, bundle_id: str, root_ca_path: str, production: bool):
        self.team_id = team_id
        self.bundle_id = bundle_id
        self.app_id = f"{team_id}.{bundle_id}"
        self.root_ca_path = root_ca_path
        self.production = production

    def _config(self, key_id: bytes) -> AppleConfig:
        return AppleConfig(
            key_id=key_id,
            app_id=self.app_id,
            root_ca=_load_root_ca(self.root_ca_path),
            production=self.production,
        )

    def _check_bound_identifier(self, bound_identifier: str | None) -> str:
        if bound_identifier and bound_identifier not in (self.app_id, self.bundle_id):
            raise PlatformVerificationError(
                f"bundle identifier {bound_identifier} is not {self.app_id}",
                VerificationFailure.IDENTIFIER_MISMATCH,
            )
        return self.app_id

    async def verify_attestation(
        self,
        evidence: str,
        challenge: str,
        key_id: str,
        bound_identifier: str | None = None,
    ) -> AttestedKey:
        app_id = self._check_bound_identifier(bound_identifier)
        raw_key_id = _b64decode(key_id, "key id")
        attestation_obj = _b64decode(evidence, "attestation object")

        # The client signs SHA256(challenge) as its clientDataHash
        client_data_hash = hashlib.sha256(challenge.encode("utf-8")).digest()
        try:
            attestation = Attestation(attestation_obj, client_data_hash, self._config(raw_key_id))
            await run_in_threadpool(attestation.verify)

            verified_data = attestation.data["data"]
            credential_id = verified_data["credential_id"]
            auth_data = verified_data["raw"]["authData"]
            counter = read_sign_count(auth_data)
            public_key_pem = cose_key_to_pem(auth_data, credential_id)
        except FileNotFoundError:
            raise
        except Exception as e:
            raise _classify(e, VerificationFailure.BAD_SIGNATURE) from e

        logger.debug(f"App Attest attestation verified for {app_id}")
        return AttestedKey(
            device_id=key_id,
            public_key_handle=public_key_pem,
            initial_counter=counter,
            bound_identifier=app_id,
        )

    async def verify_assertion(
        self,
        evidence: str,
        client_data: bytes,
        public_key_handle: str | None,
    ) -> int:
        if not public_key_handle:
            raise PlatformVerificationError(
                "no public key stored for key", VerificationFailure.BAD_FORMAT
            )
        assertion_obj = _b64decode(evidence, "assertion")
        try:
            public_key = serialization.load_pem_public_key(public_key_handle.encode())
            # Key id is only consulted during attestation
            config = self._config(b"")
            expected_hash = hashlib.sha256(client_data).digest()
            assertion = Assertion(assertion_obj, expected_hash, public_key, config)
            await run_in_threadpool(assertion.verify)

            unpacked_assertion = cbor2.loads(assertion_obj)
            return read_sign_count(unpacked_assertion["authenticatorData"])
        except FileNotFoundError:
            raise
        except Exception as e:
            raise _classify(e, VerificationFailure.BAD_SIGNATURE) from e
