import base64
import hashlib

import cbor2
from cryptography.hazmat.primitives.asymmetric import ec

TEST_CREDENTIAL_ID = hashlib.sha256(b"test-credential").digest()


def generate_p256_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def cose_p256_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    numbers = public_key.public_numbers()
    return cbor2.dumps(
        {
            1: 2,
            3: -7,
            -1: 1,
            -2: numbers.x.to_bytes(32, "big"),
            -3: numbers.y.to_bytes(32, "big"),
        }
    )


def build_auth_data(
    counter: int,
    credential_id: bytes = TEST_CREDENTIAL_ID,
    cose_key: bytes | None = None,
) -> bytes:
    """authData as App Attest lays it out, with the attested credential appended when given a key."""
    auth_data = hashlib.sha256(b"TEAMID1234.org.example.app").digest()
    auth_data += b"\x41"
    auth_data += counter.to_bytes(4, "big")
    if cose_key is None:
        return auth_data
    auth_data += b"appattestdevelop"
    auth_data += len(credential_id).to_bytes(2, "big")
    return auth_data + credential_id + cose_key


def build_assertion(counter: int) -> str:
    assertion = cbor2.dumps(
        {"signature": b"test-signature", "authenticatorData": build_auth_data(counter)}
    )
    return base64.b64encode(assertion).decode()
