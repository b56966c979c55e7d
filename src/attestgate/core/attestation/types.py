"""
Shared types for device attestation: platforms, stored records, verification
outcomes and the error taxonomy exposed to the transport layer.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone


class Platform(enum.Enum):
    UNSPECIFIED = "unspecified"
    IOS = "ios"
    ANDROID = "android"

    @classmethod
    def parse(cls, value: str | None) -> "Platform":
        """Map a client supplied platform name onto the closed set of platforms."""
        name = (value or "").strip().lower()
        if name in ("ios", "apple"):
            return cls.IOS
        if name in ("android", "google"):
            return cls.ANDROID
        return cls.UNSPECIFIED


class AttestationErrorKind(enum.Enum):
    ATTESTATION_REQUIRED = "attestation_required"
    UNSUPPORTED_PLATFORM = "unsupported_platform"
    INVALID_ATTESTATION = "invalid_attestation"
    INVALID_ASSERTION = "invalid_assertion"
    KEY_NOT_FOUND = "key_not_found"
    REPLAY_DETECTED = "replay_detected"


class VerificationFailure(enum.Enum):
    """Internal classification of a platform verification failure. Never sent to clients."""

    BAD_FORMAT = "bad_format"
    BAD_SIGNATURE = "bad_signature"
    UNTRUSTED_CHAIN = "untrusted_chain"
    IDENTIFIER_MISMATCH = "identifier_mismatch"
    CHALLENGE_MISMATCH = "challenge_mismatch"
    INTEGRITY_TOO_WEAK = "integrity_too_weak"
    VENDOR_UNAVAILABLE = "vendor_unavailable"
    UNSUPPORTED = "unsupported"


class PlatformVerificationError(Exception):
    """Raised by a PlatformVerifier when evidence cannot be verified."""

    def __init__(self, reason: str, failure: VerificationFailure):
        super().__init__(reason)
        self.reason = reason
        self.failure = failure


class StorageError(Exception):
    """Raised by a storage backend when the underlying store is unreachable or fails."""


class RegistrationConflictError(Exception):
    """
    Raised when a registration would replace a key it cannot vouch for: a key
    registered for another platform, or a proven public key by a keyless one.
    """


@dataclass
class Challenge:
    identifier: str
    nonce: str
    issued_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass
class DeviceKey:
    key_id: str
    platform: Platform
    public_key_handle: str | None
    bound_identifier: str
    counter: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class AttestedKey:
    """Identity and key material returned by a successful platform attestation."""

    device_id: str
    public_key_handle: str | None
    initial_counter: int
    bound_identifier: str


class CounterOutcome(enum.Enum):
    ACCEPTED = "accepted"
    REPLAY_REJECTED = "replay_rejected"
    NOT_FOUND = "not_found"


@dataclass
class CounterAdvance:
    outcome: CounterOutcome
    counter: int | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome == CounterOutcome.ACCEPTED


@dataclass
class AttestationData:
    platform: Platform
    token: str
    key_id: str
    challenge: str
    bound_identifier: str | None = None


@dataclass
class AssertionData:
    assertion: str
    client_data: bytes
    key_id: str


class VerificationStatus(enum.Enum):
    VERIFIED = "verified"
    REJECTED = "rejected"


@dataclass
class VerificationResult:
    status: VerificationStatus
    error: AttestationErrorKind | None = None
    key_id: str | None = None
    platform: Platform | None = None
    detail: str | None = None  # internal only

    @property
    def is_verified(self) -> bool:
        return self.status == VerificationStatus.VERIFIED

    @classmethod
    def verified(cls, key_id: str | None = None, platform: Platform | None = None):
        return cls(VerificationStatus.VERIFIED, key_id=key_id, platform=platform)

    @classmethod
    def rejected(
        cls,
        error: AttestationErrorKind,
        key_id: str | None = None,
        platform: Platform | None = None,
        detail: str | None = None,
    ):
        return cls(
            VerificationStatus.REJECTED,
            error=error,
            key_id=key_id,
            platform=platform,
            detail=detail,
        )
