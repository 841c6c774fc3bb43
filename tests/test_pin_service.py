from datetime import timedelta

import pytest

from pinauth.core.exceptions import StorageError
from pinauth.db.repositories.pin_credential import lookup_credential
from pinauth.services.identity import Identity
from pinauth.services.pin_service import (
    ALREADY_SET,
    BAD_PIN,
    CONSTRAINT_CONFLICT,
    FORBIDDEN,
    INVALID_PIN_FORMAT,
    LOCKED,
    NOT_SET,
    RATE_LIMITED,
    PinGranted,
    PinRejection,
)
ADMIN_KEY = "admin-secret"

PHONE = Identity.parse(phone="5551234567")


async def test_verify_without_credential_is_not_set(db, service):
    result = await service.verify_pin(db, Identity.parse(email="nobody@kiosk-mail.com"), "1234")
    assert result == PinRejection(NOT_SET)


@pytest.mark.parametrize("pin", ["12", "123456789", "12a4"])
async def test_set_pin_rejects_bad_format(db, service, pin):
    result = await service.set_pin(db, PHONE, pin)
    assert result == PinRejection(INVALID_PIN_FORMAT)
    assert await lookup_credential(db, phone=PHONE.phone) is None


async def test_set_then_verify_issues_distinct_tokens(db, service, clock):
    granted = await service.set_pin(db, PHONE, "1234")
    assert isinstance(granted, PinGranted)
    assert granted.expires_in_ms == 30 * 60 * 1000

    tokens = {granted.token}
    for _ in range(3):
        result = await service.verify_pin(db, PHONE, "1234")
        assert isinstance(result, PinGranted)
        assert service.sessions.get(result.token) is not None
        tokens.add(result.token)
    assert len(tokens) == 4


async def test_set_pin_twice_is_already_set_and_leaves_row_alone(db, service):
    await service.set_pin(db, PHONE, "1234")
    await service.verify_pin(db, PHONE, "9999")
    before = await lookup_credential(db, phone=PHONE.phone)
    hash_before, count_before = before.pin_hash, before.failure_count

    result = await service.set_pin(db, PHONE, "5678")
    assert result == PinRejection(ALREADY_SET)

    after = await lookup_credential(db, phone=PHONE.phone)
    assert after.pin_hash == hash_before
    assert after.failure_count == count_before == 1


async def test_set_pin_conflict_between_two_rows(db, service):
    await service.set_pin(db, Identity.parse(phone="5551234567"), "1234")
    await service.set_pin(db, Identity.parse(email="x@kiosk-mail.com"), "1234")
    await service.admin_reset_pin(db, Identity.parse(phone="5551234567"), ADMIN_KEY)

    result = await service.set_pin(db, Identity.parse(phone="5551234567", email="x@kiosk-mail.com"), "4321")
    assert result == PinRejection(CONSTRAINT_CONFLICT)


async def test_lockout_walkthrough(db, service, clock):
    t1 = await service.set_pin(db, PHONE, "1234")
    assert isinstance(t1, PinGranted)

    remaining = []
    for _ in range(4):
        result = await service.verify_pin(db, PHONE, "0000")
        assert result.kind == BAD_PIN and result.locked is False
        remaining.append(result.attempts_remaining)
    assert remaining == [4, 3, 2, 1]

    fifth = await service.verify_pin(db, PHONE, "0000")
    assert fifth.kind == BAD_PIN
    assert fifth.locked is True
    assert fifth.attempts_remaining == 0

    locked = await service.verify_pin(db, PHONE, "1234")
    assert locked.kind == LOCKED
    assert locked.locked_until == clock.now + timedelta(minutes=15)
    assert locked.locked_minutes_remaining == 15
    # Попытка во время блокировки не увеличивает счётчик
    assert (await lookup_credential(db, phone=PHONE.phone)).failure_count == 5

    clock.advance(minutes=15)
    t2 = await service.verify_pin(db, PHONE, "1234")
    assert isinstance(t2, PinGranted)
    assert t2.token != t1.token

    status = await service.pin_status(db, PHONE)
    assert status.attempts == 0
    assert status.attempts_remaining == 5
    assert status.locked is False


@pytest.mark.parametrize("failures", [0, 1, 4])
async def test_success_resets_failure_count(db, service, failures):
    await service.set_pin(db, PHONE, "123456")
    for _ in range(failures):
        await service.verify_pin(db, PHONE, "654321")

    assert isinstance(await service.verify_pin(db, PHONE, "123456"), PinGranted)
    assert (await lookup_credential(db, phone=PHONE.phone)).failure_count == 0


async def test_rate_limit_does_not_touch_credential(db, service, clock):
    await service.set_pin(db, PHONE, "1234")
    for _ in range(2):
        await service.verify_pin(db, PHONE, "0000")
    for _ in range(13):
        assert isinstance(await service.verify_pin(db, PHONE, "1234"), PinGranted)

    result = await service.verify_pin(db, PHONE, "0000")
    assert result.kind == RATE_LIMITED
    assert result.retry_after_seconds == 300
    assert (await lookup_credential(db, phone=PHONE.phone)).failure_count == 0

    clock.advance(minutes=5)
    assert isinstance(await service.verify_pin(db, PHONE, "1234"), PinGranted)


async def test_rate_limit_applies_to_unknown_identities(db, service):
    identity = Identity.parse(phone="5550000000")
    for _ in range(15):
        assert (await service.verify_pin(db, identity, "1234")).kind == NOT_SET
    result = await service.verify_pin(db, identity, "1234")
    assert result.kind == RATE_LIMITED
    assert result.retry_after_seconds > 0


async def test_verify_falls_back_to_email(db, service):
    await service.set_pin(db, Identity.parse(email="Kiosk.User@Kiosk-Mail.com"), "2468")

    result = await service.verify_pin(db, Identity.parse(phone="5559999999", email="kiosk.user@kiosk-mail.com"), "2468")
    assert isinstance(result, PinGranted)


async def test_pin_status(db, service):
    empty = await service.pin_status(db, None)
    assert empty.pin_set is False and empty.attempts_remaining == 5

    assert (await service.pin_status(db, PHONE)).pin_set is False

    granted = await service.set_pin(db, PHONE, "1234")
    await service.verify_pin(db, PHONE, "1111")
    status = await service.pin_status(db, PHONE, granted.token)
    assert status.pin_set is True
    assert status.attempts == 1
    assert status.attempts_remaining == 4
    assert status.session_active is True

    other = Identity.parse(phone="5550000000")
    assert (await service.pin_status(db, other, granted.token)).session_active is False

    service.sessions.consume(granted.token)
    assert (await service.pin_status(db, PHONE, granted.token)).session_active is False


async def test_admin_reset(db, service):
    await service.set_pin(db, PHONE, "1234")

    assert await service.admin_reset_pin(db, PHONE, "wrong") == PinRejection(FORBIDDEN)
    assert (await lookup_credential(db, phone=PHONE.phone)).pin_hash is not None

    result = await service.admin_reset_pin(db, PHONE, ADMIN_KEY)
    assert result.ok is True
    assert result.rows_affected == 1
    assert (await service.verify_pin(db, PHONE, "1234")).kind == NOT_SET

    assert isinstance(await service.set_pin(db, PHONE, "5678"), PinGranted)


async def test_admin_reset_is_audited(db, service, caplog):
    with caplog.at_level("WARNING", logger="pinauth.services.pin_service"):
        await service.admin_reset_pin(db, PHONE, "wrong")
        await service.admin_reset_pin(db, PHONE, ADMIN_KEY)

    audit = [r.getMessage() for r in caplog.records if "AUDIT" in r.getMessage()]
    assert len(audit) == 2
    assert all("5551234567" in line for line in audit)


async def test_pin_status_without_identity_ignores_token(db, service):
    granted = await service.set_pin(db, PHONE, "1234")

    def fail_get(token):
        raise AssertionError("session lookup is not needed without identity")

    service.sessions.get = fail_get
    status = await service.pin_status(db, None, granted.token)
    assert status.session_active is False
    assert status.pin_set is False


async def test_admin_reset_storage_error_is_audited(db, service, caplog, monkeypatch):
    async def broken_clear(*args, **kwargs):
        raise StorageError("database unavailable")

    monkeypatch.setattr("pinauth.services.pin_service.admin_clear_pin", broken_clear)

    with caplog.at_level("WARNING", logger="pinauth.services.pin_service"):
        with pytest.raises(StorageError):
            await service.admin_reset_pin(db, PHONE, ADMIN_KEY)

    audit = [r.getMessage() for r in caplog.records if "AUDIT" in r.getMessage()]
    assert len(audit) == 1
    assert "5551234567" in audit[0]
