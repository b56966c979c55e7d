"""
Wiring of the attestation subsystem from settings.

The storage backend is explicit configuration. "memory" keeps challenges and
counters in this process and is only correct for a single instance; "postgres"
shares them across instances through conditional writes. There is no fallback
between the two.
"""

import asyncio

from loguru import logger

from attestgate.core.attestation.platforms.app_attest import AppAttestVerifier
from attestgate.core.attestation.platforms.base import PlatformVerifier
from attestgate.core.attestation.platforms.play_integrity import PlayIntegrityVerifier
from attestgate.core.attestation.types import StorageError
from attestgate.core.attestation.verifier import AttestationVerifier
from attestgate.core.config import Env, env
from attestgate.core.pg_services.attestation_pg_service import (
    AttestationPGService,
    PGChallengeStore,
    PGDeviceKeyStore,
)
from attestgate.core.stores.base import ChallengeStore, DeviceKeyStore
from attestgate.core.stores.memory import MemoryChallengeStore, MemoryDeviceKeyStore


def build_stores(
    settings: Env = env,
) -> tuple[ChallengeStore, DeviceKeyStore, AttestationPGService | None]:
    if settings.STORAGE_BACKEND == "memory":
        return (
            MemoryChallengeStore(settings.CHALLENGE_EXPIRY_SECONDS),
            MemoryDeviceKeyStore(),
            None,
        )
    if settings.STORAGE_BACKEND == "postgres":
        attestation_pg = AttestationPGService()
        return (
            PGChallengeStore(attestation_pg, settings.CHALLENGE_EXPIRY_SECONDS),
            PGDeviceKeyStore(attestation_pg),
            attestation_pg,
        )
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")


def build_platform_verifiers(settings: Env = env) -> list[PlatformVerifier]:
    verifiers = []
    if settings.app_attest_active:
        verifiers.append(
            AppAttestVerifier(
                team_id=settings.APP_DEVELOPMENT_TEAM,
                bundle_id=settings.APP_BUNDLE_ID,
                root_ca_path=settings.APP_ATTEST_ROOT_CA_PATH,
                production=settings.APP_ATTEST_PRODUCTION,
            )
        )
    if settings.play_integrity_active:
        verifiers.append(
            PlayIntegrityVerifier(
                package_name=settings.PLAY_INTEGRITY_PACKAGE_NAME,
                service_account_file=settings.PLAY_INTEGRITY_SERVICE_ACCOUNT_FILE,
                require_strong_integrity=settings.PLAY_INTEGRITY_REQUIRE_STRONG,
                request_timeout=settings.PLAY_INTEGRITY_REQUEST_TIMEOUT_SECONDS,
            )
        )
    return verifiers


def build_verifier(
    settings: Env = env,
) -> tuple[AttestationVerifier, AttestationPGService | None]:
    challenge_store, key_store, attestation_pg = build_stores(settings)
    verifier = AttestationVerifier(
        challenge_store,
        key_store,
        build_platform_verifiers(settings),
        timeout_seconds=settings.VERIFICATION_TIMEOUT_SECONDS,
    )
    logger.info(
        f"Attestation {'enabled' if verifier.is_enabled else 'disabled'} - "
        f"platforms: {[p.value for p in verifier.enabled_platforms]}, "
        f"storage: {settings.STORAGE_BACKEND}, "
        f"challenge expiry: {settings.CHALLENGE_EXPIRY_SECONDS}s"
    )
    return verifier, attestation_pg


async def purge_challenges_periodically(
    verifier: AttestationVerifier, interval_seconds: float
) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await verifier.purge_expired_challenges()
        except StorageError as e:
            logger.error(f"Challenge purge failed: {e}")
