from abc import ABC, abstractmethod

from attestgate.core.attestation.types import CounterAdvance, DeviceKey, Platform


class ChallengeStore(ABC):
    """
    Issues and consumes single-use challenges keyed by a client supplied identifier.

    Only one challenge is outstanding per identifier: generating a new one
    replaces the previous one.
    """

    @abstractmethod
    async def generate(self, identifier: str) -> str:
        """Create, persist and return a new nonce for `identifier`."""

    @abstractmethod
    async def validate(self, identifier: str, nonce: str) -> bool:
        """
        Consume the challenge for `identifier` if it exists, is not expired
        and matches `nonce`. Returns False without consuming anything otherwise.
        Concurrent calls with the same pair observe True at most once.
        """

    @abstractmethod
    async def purge_expired(self) -> int:
        """Delete expired challenges and return how many were removed."""

    def check_status(self) -> bool:
        return True


class DeviceKeyStore(ABC):
    """Persists attested device keys and their monotonic signature counters."""

    @abstractmethod
    async def register(
        self,
        key_id: str,
        platform: Platform,
        public_key_handle: str | None,
        bound_identifier: str,
        initial_counter: int,
    ) -> DeviceKey:
        """
        Store a newly attested key, replacing a previous registration of `key_id`
        when `can_replace` allows it. Raises RegistrationConflictError otherwise.
        """

    @abstractmethod
    async def get(self, key_id: str) -> DeviceKey | None:
        pass

    @abstractmethod
    async def advance_counter(self, key_id: str, presented_counter: int) -> CounterAdvance:
        """
        Atomically store `presented_counter` if it is strictly greater than the
        stored counter. Anything else is rejected as a replay.
        """

    def check_status(self) -> bool:
        return True


def can_replace(
    existing: DeviceKey, platform: Platform, public_key_handle: str | None
) -> bool:
    """A registration may only be superseded from the same platform, and a keyed one only by a new key."""
    if existing.platform != platform:
        return False
    return existing.public_key_handle is None or public_key_handle is not None
