import pytest
from itsdangerous import URLSafeTimedSerializer

from propass import models
from propass.auth.accounts import create_user
from propass.entitlements import apply_grant
from propass.errors import UnknownUser
from propass.redemption import validate
from propass.sessions import SESSION_SERIALIZER_SALT, SessionAuthority


SECRET = "unit-test-secret"


@pytest.fixture
def authority():
    return SessionAuthority(SECRET, clock=lambda: 1_700_000_000.0)


def test_issue_snapshots_store_plan(db_session, authority):
    user = create_user(db_session, email="snap@example.com")
    session = authority.issue(db_session, user.id)
    assert session.subject == user.id
    assert session.plan == models.PLAN_FREE
    assert not session.is_pro
    assert session.to_public()["issuedAt"].startswith("2023-11-14T22:13:20")


def test_refresh_converges_after_apply(db_session, authority):
    user = create_user(db_session, email="converge@example.com")
    stale = authority.issue(db_session, user.id)

    apply_grant(db_session, user.id, validate("FREEPRO2024"))

    assert stale.plan == models.PLAN_FREE
    fresh = authority.refresh(db_session, stale)
    assert fresh.plan == models.PLAN_PRO
    assert fresh is not stale


def test_issue_for_missing_user(db_session, authority):
    with pytest.raises(UnknownUser):
        authority.issue(db_session, 4242)


def test_token_round_trip_and_tamper(db_session, authority):
    user = create_user(db_session, email="token@example.com")
    session = authority.issue(db_session, user.id)
    token = authority.encode(session)

    assert authority.decode(token) == session
    assert authority.decode(token[:-2] + "xx") is None
    assert authority.decode("") is None
    assert SessionAuthority("other-secret").decode(token) is None


def test_expired_tokens_are_rejected(db_session):
    user = create_user(db_session, email="old@example.com")
    expiring = SessionAuthority(SECRET, max_age=-1)
    token = expiring.encode(expiring.issue(db_session, user.id))
    assert expiring.decode(token) is None


@pytest.mark.parametrize(
    "payload",
    [
        {"sub": 1, "email": "x@example.com", "plan": "enterprise", "iat": 1.0},
        {"sub": "abc", "email": "x@example.com", "plan": "pro", "iat": 1.0},
        {"sub": 1, "email": "", "plan": "free", "iat": 1.0},
        ["not", "a", "dict"],
    ],
)
def test_malformed_payloads_decode_to_no_session(authority, payload):
    forged = URLSafeTimedSerializer(SECRET, salt=SESSION_SERIALIZER_SALT).dumps(payload)
    assert authority.decode(forged) is None
