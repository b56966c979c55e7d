import asyncio
import hmac
import time
from collections import defaultdict
from typing import Callable

from loguru import logger

from attestgate.core.attestation.types import (
    Challenge,
    CounterAdvance,
    CounterOutcome,
    DeviceKey,
    Platform,
    RegistrationConflictError,
)
from attestgate.core.stores.base import ChallengeStore, DeviceKeyStore, can_replace
from attestgate.core.utils import mask_string, new_nonce


class MemoryChallengeStore(ChallengeStore):
    """Process-local challenge store. Only valid for single instance deployments."""

    def __init__(self, expiry_seconds: int, clock: Callable[[], float] = time.time):
        self.expiry_seconds = expiry_seconds
        self._clock = clock
        self._challenges: dict[str, Challenge] = {}
        # Critical sections never await, one lock for the whole map is enough
        self._lock = asyncio.Lock()

    async def generate(self, identifier: str) -> str:
        async with self._lock:
            issued_at = self._clock()
            challenge = Challenge(
                identifier=identifier,
                nonce=new_nonce(),
                issued_at=issued_at,
                expires_at=issued_at + self.expiry_seconds,
            )
            self._challenges[identifier] = challenge
        return challenge.nonce

    async def validate(self, identifier: str, nonce: str) -> bool:
        async with self._lock:
            challenge = self._challenges.get(identifier)
            if challenge is None:
                return False
            if challenge.is_expired(self._clock()):
                # Lazily reclaimed
                del self._challenges[identifier]
                logger.debug(f"Expired challenge for {mask_string(identifier)}")
                return False
            if not hmac.compare_digest(challenge.nonce.encode(), nonce.encode()):
                return False
            del self._challenges[identifier]
            return True

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [
                identifier
                for identifier, challenge in self._challenges.items()
                if challenge.is_expired(now)
            ]
            for identifier in expired:
                del self._challenges[identifier]
        return len(expired)

    def __len__(self):
        return len(self._challenges)


class MemoryDeviceKeyStore(DeviceKeyStore):
    """Process-local device key store, counters are serialized per key id."""

    def __init__(self):
        self._keys: dict[str, DeviceKey] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def register(
        self,
        key_id: str,
        platform: Platform,
        public_key_handle: str | None,
        bound_identifier: str,
        initial_counter: int,
    ) -> DeviceKey:
        async with self._locks[key_id]:
            existing = self._keys.get(key_id)
            if existing is not None:
                if not can_replace(existing, platform, public_key_handle):
                    raise RegistrationConflictError(
                        f"key {mask_string(key_id)} is registered for {existing.platform.value}"
                    )
                logger.info(f"Replacing registration for key {mask_string(key_id)}")
            device_key = DeviceKey(
                key_id=key_id,
                platform=platform,
                public_key_handle=public_key_handle,
                bound_identifier=bound_identifier,
                counter=initial_counter,
            )
            self._keys[key_id] = device_key
        return device_key

    async def get(self, key_id: str) -> DeviceKey | None:
        device_key = self._keys.get(key_id)
        if device_key is None:
            return None
        # Copy so callers never observe later counter updates
        return DeviceKey(**vars(device_key))

    async def advance_counter(self, key_id: str, presented_counter: int) -> CounterAdvance:
        if key_id not in self._keys:
            return CounterAdvance(CounterOutcome.NOT_FOUND)
        async with self._locks[key_id]:
            device_key = self._keys.get(key_id)
            if device_key is None:
                return CounterAdvance(CounterOutcome.NOT_FOUND)
            if presented_counter <= device_key.counter:
                return CounterAdvance(CounterOutcome.REPLAY_REJECTED, device_key.counter)
            device_key.counter = presented_counter
            return CounterAdvance(CounterOutcome.ACCEPTED, presented_counter)
