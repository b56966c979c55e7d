from abc import ABC, abstractmethod

from attestgate.core.attestation.types import AttestedKey, Platform


class PlatformVerifier(ABC):
    """
    Verifies platform specific attestation and assertion evidence.

    The vendor root of trust does the cryptographic heavy lifting; implementations
    translate its verdict into an AttestedKey or a presented counter, and raise
    PlatformVerificationError for anything else. Monotonicity of the counter is
    not checked here, the caller compares it against the stored counter.
    """

    platform: Platform

    @abstractmethod
    async def verify_attestation(
        self,
        evidence: str,
        challenge: str,
        key_id: str,
        bound_identifier: str | None = None,
    ) -> AttestedKey:
        pass

    @abstractmethod
    async def verify_assertion(
        self,
        evidence: str,
        client_data: bytes,
        public_key_handle: str | None,
    ) -> int:
        pass
