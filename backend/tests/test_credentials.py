import base64
import json
from datetime import timedelta

import pytest
from jose import jwt
from sqlalchemy.exc import SQLAlchemyError

from docshare import auth, credentials
from docshare.config import settings
from docshare.credentials import CredentialKind, hash_token, verify_bearer
from docshare.errors import NotFoundError, UnauthorizedError, ValidationError
from docshare.models import UserToken
from docshare.schemas import TokenItem


def _b64(data: dict) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def test_session_token_resolves_subject(db_session, user):
    token = auth.create_access_token({"sub": user.id})
    principal = verify_bearer(db_session, token)
    assert principal.user_id == user.id
    assert principal.kind is CredentialKind.SESSION
    assert principal.token_label is None


def test_expired_session_token_is_rejected(db_session, user):
    token = auth.create_access_token({"sub": user.id}, expires_delta=timedelta(seconds=-30))
    with pytest.raises(UnauthorizedError):
        verify_bearer(db_session, token)


def test_session_token_signed_with_other_secret_is_rejected(db_session, user):
    token = jwt.encode({"sub": user.id}, "someone-elses-secret", algorithm="HS256")
    with pytest.raises(UnauthorizedError):
        verify_bearer(db_session, token)


def test_unsigned_session_token_is_rejected(db_session, user):
    token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64({'sub': user.id})}."
    with pytest.raises(UnauthorizedError):
        verify_bearer(db_session, token)


def test_algorithm_outside_allow_list_is_rejected(db_session, user, monkeypatch):
    token = auth.create_access_token({"sub": user.id})
    monkeypatch.setattr(settings, "ACCEPTED_ALGORITHMS", ["HS512"])
    with pytest.raises(UnauthorizedError):
        verify_bearer(db_session, token)


def test_session_token_without_subject_is_rejected(db_session):
    token = auth.create_access_token({"scope": "nothing"})
    with pytest.raises(UnauthorizedError):
        verify_bearer(db_session, token)


def test_api_token_resolves_owner_and_label(db_session, user):
    issued = credentials.issue_token(db_session, user.id, "cli")

    principal = verify_bearer(db_session, issued.token)
    assert principal.user_id == user.id
    assert principal.kind is CredentialKind.API_TOKEN
    assert principal.token_label == "cli"


def test_only_digest_of_api_token_is_stored(db_session, user):
    issued = credentials.issue_token(db_session, user.id, "cli")

    row = db_session.get(UserToken, issued.id)
    assert row.token_hash == hash_token(issued.token)
    assert issued.token not in {row.token_hash, row.name, row.id}

    listed = [TokenItem.model_validate(item).model_dump() for item in credentials.list_tokens(db_session, user.id)]
    assert listed and all(issued.token not in json.dumps(item, default=str) for item in listed)


def test_api_token_use_is_recorded(db_session, user):
    issued = credentials.issue_token(db_session, user.id, "cli")
    verify_bearer(db_session, issued.token)

    db_session.expire_all()
    assert db_session.get(UserToken, issued.id).last_used_at is not None


def test_last_used_failure_does_not_block_authentication(db_session, user, monkeypatch):
    issued = credentials.issue_token(db_session, user.id, "cli")

    def broken_clock():
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(credentials, "utcnow", broken_clock)
    assert verify_bearer(db_session, issued.token).user_id == user.id


def test_revoked_token_is_rejected(db_session, user):
    issued = credentials.issue_token(db_session, user.id, "cli")
    credentials.revoke_token(db_session, user.id, issued.id)

    with pytest.raises(UnauthorizedError):
        verify_bearer(db_session, issued.token)
    assert db_session.get(UserToken, issued.id) is not None


def test_revoking_twice_is_not_found(db_session, user):
    issued = credentials.issue_token(db_session, user.id, "cli")
    credentials.revoke_token(db_session, user.id, issued.id)
    with pytest.raises(NotFoundError):
        credentials.revoke_token(db_session, user.id, issued.id)


def test_cannot_revoke_someone_elses_token(db_session, user, other_user):
    issued = credentials.issue_token(db_session, user.id, "cli")
    with pytest.raises(NotFoundError):
        credentials.revoke_token(db_session, other_user.id, issued.id)


def test_refresh_rotates_secret(db_session, user):
    issued = credentials.issue_token(db_session, user.id, "cli")
    refreshed = credentials.refresh_token(db_session, user.id, issued.id)

    assert refreshed.id == issued.id
    assert refreshed.name == "cli"
    assert refreshed.token != issued.token
    with pytest.raises(UnauthorizedError):
        verify_bearer(db_session, issued.token)
    assert verify_bearer(db_session, refreshed.token).user_id == user.id


def test_refresh_of_revoked_token_is_not_found(db_session, user):
    issued = credentials.issue_token(db_session, user.id, "cli")
    credentials.revoke_token(db_session, user.id, issued.id)
    with pytest.raises(NotFoundError):
        credentials.refresh_token(db_session, user.id, issued.id)


def test_inactive_owner_invalidates_api_token(db_session, user):
    issued = credentials.issue_token(db_session, user.id, "cli")
    auth.deactivate_user(db_session, user.id)

    with pytest.raises(UnauthorizedError):
        verify_bearer(db_session, issued.token)
    with pytest.raises(UnauthorizedError):
        credentials.issue_token(db_session, user.id, "another")


def test_rejections_do_not_reveal_credential_kind(db_session, user):
    expired_session = auth.create_access_token({"sub": user.id}, expires_delta=timedelta(seconds=-1))
    messages = set()
    for raw in (expired_session, "deadbeef" * 8, "a.b.c", ""):
        with pytest.raises(UnauthorizedError) as excinfo:
            verify_bearer(db_session, raw)
        messages.add(excinfo.value.message)
    assert messages == {credentials.INVALID_CREDENTIAL}


@pytest.mark.parametrize("name", ["", "   ", "x" * 101])
def test_token_name_is_validated(db_session, user, name):
    with pytest.raises(ValidationError):
        credentials.issue_token(db_session, user.id, name)


def test_login_rejects_inactive_user(db_session, user):
    auth.deactivate_user(db_session, user.id)
    with pytest.raises(UnauthorizedError, match="Invalid credentials"):
        auth.login(db_session, "alice", "alice-password")


def test_login_returns_verifiable_session_token(db_session, user):
    logged_in, token = auth.login(db_session, "alice", "alice-password")
    assert logged_in.id == user.id
    assert verify_bearer(db_session, token).user_id == user.id


def test_long_passwords_hash_and_verify():
    long_password = "p" * 150
    hashed = auth.get_password_hash(long_password)
    assert auth.verify_password(long_password, hashed)
    assert not auth.verify_password("p" * 149, hashed)
    assert not auth.verify_password("anything", "not-a-bcrypt-hash")
