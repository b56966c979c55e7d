import base64
import binascii
import os

from fastapi import HTTPException
from loguru import logger


def b64decode_safe(data_b64: str, obj_name: str = "object") -> bytes:
    try:
        # Clients send either alphabet, padded or not
        normalized = data_b64.strip().rstrip("=").replace("-", "+").replace("_", "/")
        padded = normalized + "=" * (-len(normalized) % 4)
        return base64.b64decode(padded, validate=True)
    except Exception as e:
        logger.error(f"Error decoding base64 for {obj_name}: {e}")
        raise HTTPException(status_code=400, detail={obj_name: "Invalid Base64"})


def new_nonce() -> str:
    # 256 bits of entropy
    return binascii.hexlify(os.urandom(32)).decode("utf-8")


def mask_string(value: str | None) -> str:
    """Mask an identifier for logging, keeping the first and last four characters."""
    if not value or len(value) <= 8:
        return "***"
    return f"{value[:4]}***{value[-4:]}"
