import base64

import pytest
from fastapi import HTTPException

from attestgate.core.utils import b64decode_safe, mask_string, new_nonce


def test_b64decode_safe():
    # Valid base64 string
    original_data = b"Test data for base64"
    encoded_data = base64.b64encode(original_data).decode("utf-8")
    decoded_data = b64decode_safe(encoded_data)
    assert decoded_data == original_data

    # Invalid base64 string
    invalid_encoded_data = "Invalid@@Base64!!"
    data_name = "custom_name"
    with pytest.raises(HTTPException) as exc_info:
        b64decode_safe(invalid_encoded_data, data_name)

    assert exc_info.value.status_code == 400
    assert "Invalid Base64" in exc_info.value.detail[data_name]


def test_b64decode_safe_accepts_urlsafe_unpadded():
    original_data = b"\xfb\xff\xfe device key"
    encoded_data = base64.urlsafe_b64encode(original_data).decode().rstrip("=")
    assert b64decode_safe(encoded_data) == original_data


def test_new_nonce_is_256_bit_hex():
    nonce = new_nonce()
    assert len(nonce) == 64
    int(nonce, 16)
    assert new_nonce() != nonce


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, "***"),
        ("", "***"),
        ("short", "***"),
        ("12345678", "***"),
        ("dGVzdC1rZXktaWQ=", "dGVz***aWQ="),
    ],
)
def test_mask_string(value, expected):
    assert mask_string(value) == expected
