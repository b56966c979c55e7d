from loguru import logger

from attestgate.core.attestation.types import (
    CounterAdvance,
    CounterOutcome,
    DeviceKey,
    Platform,
    RegistrationConflictError,
    StorageError,
)
from attestgate.core.config import env
from attestgate.core.pg_services.pg_service import PGService
from attestgate.core.prometheus_metrics import metrics
from attestgate.core.stores.base import ChallengeStore, DeviceKeyStore
from attestgate.core.utils import mask_string, new_nonce


class AttestationPGService(PGService):
    def __init__(self):
        super().__init__(env.ATTESTATION_DB_NAME)

    async def fetchrow(self, operation: str, query: str, *args):
        try:
            return await self.pg.fetchrow(query, *args)
        except Exception as e:
            logger.error(f"Error during {operation}: {e}")
            metrics.storage_error_count_total.labels(operation=operation).inc()
            raise StorageError(f"{operation} failed") from e

    async def execute(self, operation: str, query: str, *args) -> str:
        try:
            return await self.pg.execute(query, *args)
        except Exception as e:
            logger.error(f"Error during {operation}: {e}")
            metrics.storage_error_count_total.labels(operation=operation).inc()
            raise StorageError(f"{operation} failed") from e


class PGChallengeStore(ChallengeStore):
    def __init__(self, service: AttestationPGService, expiry_seconds: int):
        self.service = service
        self.expiry_seconds = expiry_seconds

    async def generate(self, identifier: str) -> str:
        challenge = new_nonce()
        # Replaces any outstanding challenge for the identifier
        await self.service.execute(
            "store_challenge",
            """
            INSERT INTO challenges (identifier, challenge, created_at)
            VALUES ($1, $2, NOW())
            ON CONFLICT (identifier) DO UPDATE SET
            challenge = EXCLUDED.challenge,
            created_at = EXCLUDED.created_at
            """,
            identifier,
            challenge,
        )
        return challenge

    async def validate(self, identifier: str, nonce: str) -> bool:
        # A single DELETE both checks and consumes, so concurrent callers race on the row lock
        record = await self.service.fetchrow(
            "consume_challenge",
            """
            DELETE FROM challenges
            WHERE identifier = $1
              AND challenge = $2
              AND created_at > NOW() - make_interval(secs => $3)
            RETURNING identifier
            """,
            identifier,
            nonce,
            float(self.expiry_seconds),
        )
        return record is not None

    async def purge_expired(self) -> int:
        status = await self.service.execute(
            "purge_challenges",
            """
            DELETE FROM challenges
            WHERE created_at <= NOW() - make_interval(secs => $1)
            """,
            float(self.expiry_seconds),
        )
        # asyncpg returns the command tag, e.g. "DELETE 3"
        return int(status.split()[-1])

    def check_status(self) -> bool:
        return self.service.check_status()


class PGDeviceKeyStore(DeviceKeyStore):
    def __init__(self, service: AttestationPGService):
        self.service = service

    async def register(
        self,
        key_id: str,
        platform: Platform,
        public_key_handle: str | None,
        bound_identifier: str,
        initial_counter: int,
    ) -> DeviceKey:
        record = await self.service.fetchrow(
            "store_key",
            """
            INSERT INTO device_keys
            (key_id, platform, public_key, bound_identifier, counter, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, NOW(), NOW())
            ON CONFLICT (key_id) DO UPDATE SET
            platform = EXCLUDED.platform,
            public_key = EXCLUDED.public_key,
            bound_identifier = EXCLUDED.bound_identifier,
            counter = EXCLUDED.counter,
            created_at = EXCLUDED.created_at,
            updated_at = EXCLUDED.updated_at
            WHERE device_keys.platform = EXCLUDED.platform
              AND (device_keys.public_key IS NULL OR EXCLUDED.public_key IS NOT NULL)
            RETURNING created_at
            """,
            key_id,
            platform.value,
            public_key_handle,
            bound_identifier,
            initial_counter,
        )
        # The guarded upsert returns nothing when an existing registration was kept
        if record is None:
            raise RegistrationConflictError(
                f"key {mask_string(key_id)} is registered for another platform or key"
            )
        return DeviceKey(
            key_id=key_id,
            platform=platform,
            public_key_handle=public_key_handle,
            bound_identifier=bound_identifier,
            counter=initial_counter,
            created_at=record["created_at"],
        )

    async def get(self, key_id: str) -> DeviceKey | None:
        record = await self.service.fetchrow(
            "get_key",
            """
            SELECT platform, public_key, bound_identifier, counter, created_at
            FROM device_keys
            WHERE key_id = $1
            """,
            key_id,
        )
        if record is None:
            return None
        return DeviceKey(
            key_id=key_id,
            platform=Platform(record["platform"]),
            public_key_handle=record["public_key"],
            bound_identifier=record["bound_identifier"],
            counter=record["counter"],
            created_at=record["created_at"],
        )

    async def advance_counter(self, key_id: str, presented_counter: int) -> CounterAdvance:
        # stored_counter is read from the pre-update snapshot, NULL means no such key
        record = await self.service.fetchrow(
            "advance_counter",
            """
            WITH updated AS (
                UPDATE device_keys
                SET counter = $2,
                    updated_at = NOW()
                WHERE key_id = $1 AND counter < $2
                RETURNING counter
            )
            SELECT
                (SELECT counter FROM updated) AS new_counter,
                (SELECT counter FROM device_keys WHERE key_id = $1) AS stored_counter
            """,
            key_id,
            presented_counter,
        )
        if record["new_counter"] is not None:
            return CounterAdvance(CounterOutcome.ACCEPTED, record["new_counter"])
        if record["stored_counter"] is None:
            return CounterAdvance(CounterOutcome.NOT_FOUND)
        return CounterAdvance(CounterOutcome.REPLAY_REJECTED, record["stored_counter"])

    def check_status(self) -> bool:
        return self.service.check_status()
