from datetime import datetime, timezone

import pytest

from attestgate.core.attestation.types import (
    CounterOutcome,
    Platform,
    RegistrationConflictError,
    StorageError,
)
from attestgate.core.pg_services.attestation_pg_service import (
    AttestationPGService,
    PGChallengeStore,
    PGDeviceKeyStore,
)
from tests.consts import TEST_APP_ID, TEST_IDENTIFIER, TEST_KEY_ID, TEST_PUBLIC_KEY_PEM

CREATED_AT = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def pg_service(mocker):
    service = AttestationPGService()
    service.pg = mocker.AsyncMock()
    service.connected = True
    return service


async def test_generate_challenge_upserts(pg_service):
    store = PGChallengeStore(pg_service, expiry_seconds=300)

    challenge = await store.generate(TEST_IDENTIFIER)

    assert len(challenge) == 64
    query, identifier, stored = pg_service.pg.execute.call_args.args
    assert "ON CONFLICT (identifier)" in query
    assert identifier == TEST_IDENTIFIER
    assert stored == challenge


async def test_validate_challenge_consumes_in_one_statement(pg_service):
    store = PGChallengeStore(pg_service, expiry_seconds=300)
    pg_service.pg.fetchrow.return_value = {"identifier": TEST_IDENTIFIER}

    assert await store.validate(TEST_IDENTIFIER, "nonce") is True

    query, *args = pg_service.pg.fetchrow.call_args.args
    assert query.strip().startswith("DELETE FROM challenges")
    assert "RETURNING" in query
    assert args == [TEST_IDENTIFIER, "nonce", 300.0]


async def test_validate_challenge_not_found(pg_service):
    store = PGChallengeStore(pg_service, expiry_seconds=300)
    pg_service.pg.fetchrow.return_value = None

    assert await store.validate(TEST_IDENTIFIER, "nonce") is False


async def test_purge_expired_parses_command_tag(pg_service):
    store = PGChallengeStore(pg_service, expiry_seconds=300)
    pg_service.pg.execute.return_value = "DELETE 3"

    assert await store.purge_expired() == 3


async def test_storage_failure_raises_storage_error(pg_service):
    store = PGChallengeStore(pg_service, expiry_seconds=300)
    pg_service.pg.fetchrow.side_effect = OSError("connection reset")

    with pytest.raises(StorageError):
        await store.validate(TEST_IDENTIFIER, "nonce")


async def test_register_key(pg_service):
    store = PGDeviceKeyStore(pg_service)
    pg_service.pg.fetchrow.return_value = {"created_at": CREATED_AT}

    device_key = await store.register(
        TEST_KEY_ID, Platform.IOS, TEST_PUBLIC_KEY_PEM, TEST_APP_ID, 0
    )

    assert device_key.counter == 0
    assert device_key.created_at == CREATED_AT
    query, *args = pg_service.pg.fetchrow.call_args.args
    assert "ON CONFLICT (key_id) DO UPDATE" in query
    assert "WHERE device_keys.platform = EXCLUDED.platform" in query
    assert args == [TEST_KEY_ID, "ios", TEST_PUBLIC_KEY_PEM, TEST_APP_ID, 0]


async def test_register_conflict_keeps_existing_key(pg_service):
    store = PGDeviceKeyStore(pg_service)
    # ON CONFLICT ... WHERE skipped the update, so nothing is returned
    pg_service.pg.fetchrow.return_value = None

    with pytest.raises(RegistrationConflictError):
        await store.register(TEST_KEY_ID, Platform.ANDROID, None, "org.example.app", 0)


async def test_get_key(pg_service):
    store = PGDeviceKeyStore(pg_service)
    pg_service.pg.fetchrow.return_value = {
        "platform": "android",
        "public_key": None,
        "bound_identifier": "org.example.app",
        "counter": 0,
        "created_at": CREATED_AT,
    }

    device_key = await store.get(TEST_KEY_ID)

    assert device_key.platform == Platform.ANDROID
    assert device_key.public_key_handle is None


async def test_get_unknown_key(pg_service):
    store = PGDeviceKeyStore(pg_service)
    pg_service.pg.fetchrow.return_value = None

    assert await store.get(TEST_KEY_ID) is None


@pytest.mark.parametrize(
    "record, outcome, counter",
    [
        ({"new_counter": 6, "stored_counter": 5}, CounterOutcome.ACCEPTED, 6),
        ({"new_counter": None, "stored_counter": 6}, CounterOutcome.REPLAY_REJECTED, 6),
        ({"new_counter": None, "stored_counter": None}, CounterOutcome.NOT_FOUND, None),
    ],
)
async def test_advance_counter(pg_service, record, outcome, counter):
    store = PGDeviceKeyStore(pg_service)
    pg_service.pg.fetchrow.return_value = record

    advance = await store.advance_counter(TEST_KEY_ID, 6)

    assert advance.outcome == outcome
    assert advance.counter == counter
    query = pg_service.pg.fetchrow.call_args.args[0]
    assert "counter < $2" in query


def test_check_status(pg_service, mocker):
    pg_service.pg = mocker.MagicMock()
    pg_service.pg.is_closing.return_value = False
    assert PGDeviceKeyStore(pg_service).check_status() is True

    pg_service.connected = False
    assert PGChallengeStore(pg_service, 300).check_status() is False
