from passkey_rp.challenges import CHALLENGE_TTL, SESSION_KEY, ChallengeStore, now_ms


def test_issue_and_get():
    store = ChallengeStore({})
    before = now_ms()
    store.issue("abc", user_verification="required")

    entry = store.get()
    assert entry.challenge == "abc"
    assert entry.user_verification == "required"
    assert before + CHALLENGE_TTL * 1000 <= entry.expires_at <= now_ms() + CHALLENGE_TTL * 1000
    assert not entry.is_expired()


def test_issue_overwrites_previous_challenge():
    backend = {}
    store = ChallengeStore(backend)
    store.issue("first")
    store.issue("second")
    assert store.get().challenge == "second"
    assert list(backend) == [SESSION_KEY]


def test_clear_is_idempotent():
    store = ChallengeStore({})
    store.issue("abc")
    store.clear()
    assert store.get() is None
    store.clear()
    assert store.get() is None


def test_expired_challenges_are_kept():
    store = ChallengeStore({})
    store.issue("abc", ttl=-1)
    entry = store.get()
    assert entry is not None
    assert entry.is_expired()
    assert not entry.is_expired(at=entry.expires_at)


def test_other_session_keys_are_untouched():
    backend = {"user_id": 7}
    store = ChallengeStore(backend)
    store.issue("abc")
    store.clear()
    assert backend == {"user_id": 7}
