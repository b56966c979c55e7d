import asyncio

from attestgate.core.attestation.platforms.base import PlatformVerifier
from attestgate.core.attestation.types import (
    AttestedKey,
    Platform,
    PlatformVerificationError,
    StorageError,
    VerificationFailure,
)
from attestgate.core.stores.memory import MemoryChallengeStore, MemoryDeviceKeyStore
from tests.consts import TEST_APP_ID, TEST_PUBLIC_KEY_PEM


class FakePlatformVerifier(PlatformVerifier):
    """
    Scriptable platform verifier.

    Attestation succeeds unless `attestation_error` is set. Each assertion pops the
    next scripted counter; an exception in the script is raised instead.
    """

    def __init__(
        self,
        platform: Platform = Platform.IOS,
        initial_counter: int = 0,
        public_key_handle: str | None = TEST_PUBLIC_KEY_PEM,
        bound_identifier: str = TEST_APP_ID,
        delay: float = 0,
    ):
        self.platform = platform
        self.initial_counter = initial_counter
        self.public_key_handle = public_key_handle
        self.bound_identifier = bound_identifier
        self.delay = delay
        self.attestation_error: Exception | None = None
        self.assertion_counters: list[int | Exception] = []
        self.attestation_calls = []
        self.assertion_calls = []

    async def verify_attestation(
        self,
        evidence: str,
        challenge: str,
        key_id: str,
        bound_identifier: str | None = None,
    ) -> AttestedKey:
        self.attestation_calls.append((evidence, challenge, key_id, bound_identifier))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.attestation_error is not None:
            raise self.attestation_error
        return AttestedKey(
            device_id=key_id,
            public_key_handle=self.public_key_handle,
            initial_counter=self.initial_counter,
            bound_identifier=self.bound_identifier,
        )

    async def verify_assertion(
        self,
        evidence: str,
        client_data: bytes,
        public_key_handle: str | None,
    ) -> int:
        self.assertion_calls.append((evidence, client_data, public_key_handle))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.assertion_counters:
            raise PlatformVerificationError(
                "no scripted counter", VerificationFailure.BAD_SIGNATURE
            )
        outcome = self.assertion_counters.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class UnavailableChallengeStore(MemoryChallengeStore):
    def __init__(self):
        super().__init__(expiry_seconds=300)

    async def generate(self, identifier: str) -> str:
        raise StorageError("store_challenge failed")

    async def validate(self, identifier: str, nonce: str) -> bool:
        raise StorageError("consume_challenge failed")

    def check_status(self) -> bool:
        return False


class UnavailableDeviceKeyStore(MemoryDeviceKeyStore):
    async def get(self, key_id: str):
        raise StorageError("get_key failed")

    def check_status(self) -> bool:
        return False
