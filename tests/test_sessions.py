import threading
from datetime import timedelta

from pinauth.services.identity import Identity
from pinauth.services.sessions import ACTIVE, CONSUMED, INVALID_OR_EXPIRED, SessionStore
from pinauth.tasks.cleanup import reap_expired_sessions

IDENTITY = Identity(phone="5551234567")


def test_create_sets_ttl_and_random_token(clock):
    store = SessionStore(clock=clock)
    first = store.create(IDENTITY)
    second = store.create(IDENTITY)

    assert first.token != second.token
    assert len(first.token) >= 43
    assert first.expires_at == clock.now + timedelta(minutes=30)
    assert first.single_use and not first.used


def test_get_does_not_consume(clock):
    store = SessionStore(clock=clock)
    session = store.create(IDENTITY)

    assert store.get(session.token) is session
    assert store.get(session.token) is session
    assert store.consume(session.token)


def test_single_use_session_consumed_once(clock):
    store = SessionStore(clock=clock)
    token = store.create(IDENTITY).token

    assert store.consume(token) is True
    assert store.consume(token) is False
    assert store.get(token) is None
    assert store.status(token) == CONSUMED


def test_multi_use_session_consumable_until_expiry(clock):
    store = SessionStore(clock=clock)
    token = store.create(IDENTITY, single_use=False).token

    assert store.consume(token)
    assert store.consume(token)
    assert store.get(token) is not None

    clock.advance(minutes=30)
    assert store.consume(token) is False


def test_expired_session_rejected_and_evicted(clock):
    store = SessionStore(clock=clock)
    token = store.create(IDENTITY).token

    clock.advance(minutes=29, seconds=59)
    assert store.status(token) == ACTIVE

    clock.advance(seconds=1)
    assert store.get(token) is None
    assert store.status(token) == INVALID_OR_EXPIRED
    assert len(store) == 0


def test_unknown_and_missing_tokens(clock):
    store = SessionStore(clock=clock)
    assert store.get(None) is None
    assert store.get("nope") is None
    assert store.consume("") is False
    assert store.status("nope") == INVALID_OR_EXPIRED


def test_revoke_is_idempotent(clock):
    store = SessionStore(clock=clock)
    token = store.create(IDENTITY).token

    store.revoke(token)
    store.revoke(token)
    store.revoke(None)
    assert store.get(token) is None


def test_reap_only_removes_expired(clock):
    store = SessionStore(clock=clock)
    old = store.create(IDENTITY).token
    clock.advance(minutes=20)
    fresh = store.create(IDENTITY).token
    clock.advance(minutes=15)

    assert reap_expired_sessions(store) == 1
    assert store.get(old) is None
    assert store.get(fresh) is not None


def test_concurrent_consume_succeeds_once(clock):
    store = SessionStore(clock=clock)
    token = store.create(IDENTITY).token
    barrier = threading.Barrier(20)
    results = []

    def worker():
        barrier.wait()
        results.append(store.consume(token))

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert results.count(False) == 19
