"""
Attestation orchestrator.

Composes the challenge store, the device key store and the platform verifiers
into the two client protocols:

* attestation: one-time registration of a device key, bound to a server issued
  challenge and vouched for by the platform vendor;
* assertion: per-request proof that the caller still holds a registered key,
  with a strictly increasing signature counter to reject replays.

Every call is a single decision. Failures come back as a rejected
VerificationResult carrying one of the AttestationErrorKind values; the reason
behind an INVALID_* verdict is only logged, never returned.
"""

import asyncio
import time
from typing import Iterable

from loguru import logger

from attestgate.core.attestation.platforms.base import PlatformVerifier
from attestgate.core.attestation.types import (
    AssertionData,
    AttestationData,
    AttestationErrorKind,
    CounterOutcome,
    Platform,
    PlatformVerificationError,
    RegistrationConflictError,
    StorageError,
    VerificationResult,
)
from attestgate.core.prometheus_metrics import PrometheusResult, metrics
from attestgate.core.stores.base import ChallengeStore, DeviceKeyStore
from attestgate.core.utils import mask_string

ATTEST_FLOW = "attest"
ASSERT_FLOW = "assert"


class AttestationVerifier:
    def __init__(
        self,
        challenge_store: ChallengeStore,
        key_store: DeviceKeyStore,
        platform_verifiers: Iterable[PlatformVerifier] = (),
        timeout_seconds: float = 10.0,
    ):
        self.challenge_store = challenge_store
        self.key_store = key_store
        self.timeout_seconds = timeout_seconds
        self._verifiers: dict[Platform, PlatformVerifier] = {
            verifier.platform: verifier for verifier in platform_verifiers
        }
        self._verifiers.pop(Platform.UNSPECIFIED, None)

    @property
    def is_enabled(self) -> bool:
        return bool(self._verifiers)

    def is_platform_enabled(self, platform: Platform) -> bool:
        return platform in self._verifiers

    @property
    def enabled_platforms(self) -> list[Platform]:
        return list(self._verifiers)

    async def generate_challenge(self, identifier: str) -> str:
        challenge = await self.challenge_store.generate(identifier)
        metrics.generate_challenge_count_total.inc()
        logger.debug(f"Issued challenge for {mask_string(identifier)}")
        return challenge

    async def verify(
        self, data: AttestationData | None, timeout: float | None = None
    ) -> VerificationResult:
        """Verify an initial attestation and register the attested device key."""
        if not self.is_enabled:
            return VerificationResult.verified()
        if data is None:
            logger.warning("Attestation required but not provided")
            return self._reject(ATTEST_FLOW, AttestationErrorKind.ATTESTATION_REQUIRED)

        start_time = time.perf_counter()
        result = await self._run(
            ATTEST_FLOW,
            self._verify_attestation(data),
            timeout,
            key_id=data.key_id,
            platform=data.platform,
        )
        metrics.verify_attestation_latency.labels(
            platform=data.platform.value, result=_result_label(result)
        ).observe(time.perf_counter() - start_time)
        return result

    async def verify_assertion(
        self, data: AssertionData | None, timeout: float | None = None
    ) -> VerificationResult:
        """Verify a per-request assertion and advance the key's signature counter."""
        if not self.is_enabled:
            return VerificationResult.verified()
        if data is None:
            logger.warning("Assertion required but not provided")
            return self._reject(ASSERT_FLOW, AttestationErrorKind.ATTESTATION_REQUIRED)

        start_time = time.perf_counter()
        result = await self._run(
            ASSERT_FLOW,
            self._verify_assertion(data),
            timeout,
            key_id=data.key_id,
        )
        platform = result.platform or Platform.UNSPECIFIED
        metrics.verify_assertion_latency.labels(
            platform=platform.value, result=_result_label(result)
        ).observe(time.perf_counter() - start_time)
        return result

    async def purge_expired_challenges(self) -> int:
        purged = await self.challenge_store.purge_expired()
        if purged:
            metrics.purged_challenges_total.inc(purged)
            logger.debug(f"Purged {purged} expired challenges")
        return purged

    async def _run(
        self,
        flow: str,
        verification,
        timeout: float | None,
        key_id: str | None = None,
        platform: Platform | None = None,
    ) -> VerificationResult:
        """Run one verification under a deadline, folding infrastructure failures into INVALID_*."""
        error = (
            AttestationErrorKind.INVALID_ATTESTATION
            if flow == ATTEST_FLOW
            else AttestationErrorKind.INVALID_ASSERTION
        )
        deadline = self.timeout_seconds if timeout is None else timeout
        try:
            return await asyncio.wait_for(verification, timeout=deadline)
        except asyncio.TimeoutError:
            logger.error(
                f"{flow} verification timed out after {deadline}s for key {mask_string(key_id)}"
            )
            return self._reject(flow, error, key_id, platform, "timeout")
        except StorageError as e:
            logger.error(f"{flow} verification storage failure for key {mask_string(key_id)}: {e}")
            return self._reject(flow, error, key_id, platform, f"storage: {e}")
        except Exception as e:
            logger.exception(
                f"{flow} verification failed unexpectedly for key {mask_string(key_id)}"
            )
            return self._reject(flow, error, key_id, platform, f"internal: {type(e).__name__}")

    async def _verify_attestation(self, data: AttestationData) -> VerificationResult:
        platform_verifier = self._verifiers.get(data.platform)
        if platform_verifier is None:
            logger.warning(f"Attestation for unsupported platform {data.platform.value}")
            return self._reject(
                ATTEST_FLOW,
                AttestationErrorKind.UNSUPPORTED_PLATFORM,
                data.key_id,
                data.platform,
            )

        if not data.token or not data.key_id:
            return self._reject(
                ATTEST_FLOW,
                AttestationErrorKind.INVALID_ATTESTATION,
                data.key_id,
                data.platform,
                "missing token or key id",
            )

        # Missing, wrong, expired and consumed challenges are indistinguishable to the client
        if not await self._validate_challenge(data.key_id, data.challenge):
            return self._reject(
                ATTEST_FLOW,
                AttestationErrorKind.INVALID_ATTESTATION,
                data.key_id,
                data.platform,
                "invalid or expired challenge",
            )

        try:
            attested = await platform_verifier.verify_attestation(
                data.token, data.challenge, data.key_id, data.bound_identifier
            )
        except PlatformVerificationError as e:
            return self._reject(
                ATTEST_FLOW,
                AttestationErrorKind.INVALID_ATTESTATION,
                data.key_id,
                data.platform,
                f"{e.failure.value}: {e.reason}",
            )

        try:
            await self.key_store.register(
                attested.device_id,
                data.platform,
                attested.public_key_handle,
                attested.bound_identifier,
                attested.initial_counter,
            )
        except RegistrationConflictError as e:
            return self._reject(
                ATTEST_FLOW,
                AttestationErrorKind.INVALID_ATTESTATION,
                data.key_id,
                data.platform,
                f"registration conflict: {e}",
            )

        logger.info(
            f"Attestation verified for key {mask_string(attested.device_id)} "
            f"platform={data.platform.value} counter={attested.initial_counter}"
        )
        return VerificationResult.verified(attested.device_id, data.platform)

    async def _verify_assertion(self, data: AssertionData) -> VerificationResult:
        if not data.assertion or not data.key_id:
            return self._reject(
                ASSERT_FLOW,
                AttestationErrorKind.INVALID_ASSERTION,
                data.key_id,
                detail="missing assertion or key id",
            )

        device_key = await self.key_store.get(data.key_id)
        if device_key is None:
            return self._reject(
                ASSERT_FLOW,
                AttestationErrorKind.KEY_NOT_FOUND,
                data.key_id,
                detail="key not registered",
            )

        platform_verifier = self._verifiers.get(device_key.platform)
        if platform_verifier is None:
            return self._reject(
                ASSERT_FLOW,
                AttestationErrorKind.INVALID_ASSERTION,
                data.key_id,
                device_key.platform,
                "platform of registered key is disabled",
            )

        try:
            presented_counter = await platform_verifier.verify_assertion(
                data.assertion, data.client_data, device_key.public_key_handle
            )
        except PlatformVerificationError as e:
            return self._reject(
                ASSERT_FLOW,
                AttestationErrorKind.INVALID_ASSERTION,
                data.key_id,
                device_key.platform,
                f"{e.failure.value}: {e.reason}",
            )

        advance = await self.key_store.advance_counter(data.key_id, presented_counter)
        if advance.outcome == CounterOutcome.REPLAY_REJECTED:
            return self._reject(
                ASSERT_FLOW,
                AttestationErrorKind.REPLAY_DETECTED,
                data.key_id,
                device_key.platform,
                f"incoming={presented_counter}, stored={advance.counter}",
            )
        if advance.outcome == CounterOutcome.NOT_FOUND:
            return self._reject(
                ASSERT_FLOW,
                AttestationErrorKind.KEY_NOT_FOUND,
                data.key_id,
                device_key.platform,
                "key disappeared during assertion",
            )

        logger.debug(
            f"Assertion verified for key {mask_string(data.key_id)} counter={advance.counter}"
        )
        return VerificationResult.verified(data.key_id, device_key.platform)

    async def _validate_challenge(self, identifier: str, challenge: str) -> bool:
        start_time = time.perf_counter()
        result = PrometheusResult.ERROR
        try:
            if not challenge:
                return False
            is_valid = await self.challenge_store.validate(identifier, challenge)
            if is_valid:
                result = PrometheusResult.SUCCESS
            return is_valid
        finally:
            metrics.validate_challenge_latency.labels(result=result.value).observe(
                time.perf_counter() - start_time
            )

    def _reject(
        self,
        flow: str,
        error: AttestationErrorKind,
        key_id: str | None = None,
        platform: Platform | None = None,
        detail: str | None = None,
    ) -> VerificationResult:
        metrics.verification_rejected_total.labels(flow=flow, error=error.value).inc()
        logger.warning(
            f"{flow} rejected: {error.value} key={mask_string(key_id)}"
            + (f" platform={platform.value}" if platform else "")
            + (f" detail={detail}" if detail else "")
        )
        return VerificationResult.rejected(error, key_id, platform, detail)


def _result_label(result: VerificationResult) -> str:
    return (
        PrometheusResult.SUCCESS.value if result.is_verified else PrometheusResult.ERROR.value
    )
