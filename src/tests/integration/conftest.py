import pytest
from fastapi.testclient import TestClient

from attestgate import run as main_app
from attestgate.core.attestation.types import Platform
from attestgate.core.attestation.verifier import AttestationVerifier
from attestgate.core.stores.memory import MemoryChallengeStore, MemoryDeviceKeyStore
from tests.mocks import FakePlatformVerifier


@pytest.fixture
def ios_verifier():
    return FakePlatformVerifier(Platform.IOS, initial_counter=0)


@pytest.fixture
def android_verifier():
    return FakePlatformVerifier(
        Platform.ANDROID, public_key_handle=None, bound_identifier="org.example.app"
    )


@pytest.fixture
def attestation_verifier(ios_verifier, android_verifier):
    return AttestationVerifier(
        MemoryChallengeStore(300),
        MemoryDeviceKeyStore(),
        [ios_verifier, android_verifier],
    )


@pytest.fixture
def mocked_client_integration(mocker, attestation_verifier):
    """
    This fixture swaps the configured verifier for one backed by memory stores
    and scriptable platform verifiers, and provides a TestClient.
    """
    mocker.patch("attestgate.run.verifier", attestation_verifier)
    mocker.patch("attestgate.run.attestation_pg", None)

    with TestClient(main_app.app) as client:
        yield client


@pytest.fixture
def disabled_client_integration(mocker):
    verifier = AttestationVerifier(MemoryChallengeStore(300), MemoryDeviceKeyStore())
    mocker.patch("attestgate.run.verifier", verifier)
    mocker.patch("attestgate.run.attestation_pg", None)

    with TestClient(main_app.app) as client:
        yield client
