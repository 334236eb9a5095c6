from summary_hub.services.sessions import (
    AdminGuard,
    InMemorySessionStore,
    hash_password,
    verify_password,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_hash_password_round_trip() -> None:
    encoded = hash_password("hunter2", iterations=1000)

    assert encoded.startswith("pbkdf2_sha256$1000$")
    assert verify_password("hunter2", encoded)
    assert not verify_password("hunter3", encoded)
    assert hash_password("hunter2", iterations=1000) != encoded


def test_malformed_hash_never_verifies() -> None:
    assert not verify_password("anything", "plain-text")
    assert not verify_password("anything", "md5$1$00$00")


def test_tokens_expire_after_ttl() -> None:
    clock = FakeClock()
    sessions = InMemorySessionStore(60, clock=clock)
    token = sessions.create()

    assert sessions.validate(token)
    clock.now += 59
    assert sessions.validate(token)
    clock.now += 2
    assert not sessions.validate(token)
    assert len(sessions) == 0


def test_sweep_drops_only_expired_tokens() -> None:
    clock = FakeClock()
    sessions = InMemorySessionStore(60, clock=clock)
    old = sessions.create()
    clock.now += 30
    fresh = sessions.create()
    clock.now += 31

    assert sessions.sweep_expired() == 1
    assert not sessions.validate(old)
    assert sessions.validate(fresh)


def test_guard_login_authorize_logout() -> None:
    guard = AdminGuard(hash_password("pw", iterations=1000), InMemorySessionStore(60))

    assert guard.login("wrong") is None
    token = guard.login("pw")
    assert token
    assert guard.authorize(token)
    assert not guard.authorize("forged")
    assert not guard.authorize(None)
    assert guard.logout(token)
    assert not guard.authorize(token)
    assert not guard.logout(token)


def test_guard_without_configured_password_refuses_everyone() -> None:
    guard = AdminGuard("", InMemorySessionStore(60))

    assert guard.login("") is None
    assert guard.login("admin") is None
