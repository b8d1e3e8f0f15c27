"""Session token and opaque token helpers."""

import re
import uuid

import jwt
import pytest

from tenant_access.core.config import settings
from tenant_access.core.security import (
    create_session_token,
    decode_session_token,
    generate_token,
    hash_token,
)


def test_session_token_roundtrip():
    user_id, org_id = uuid.uuid4(), uuid.uuid4()
    payload = decode_session_token(create_session_token(user_id, org_id))
    assert payload["sub"] == str(user_id)
    assert payload["org_id"] == str(org_id)


def test_previous_secret_still_accepted(monkeypatch):
    token = create_session_token(uuid.uuid4(), uuid.uuid4())
    old_secret = settings.JWT_SECRET
    monkeypatch.setattr(settings, "JWT_SECRET", "rotated-secret-0123456789-abcdefghij")
    monkeypatch.setattr(settings, "JWT_SECRET_PREVIOUS", old_secret)
    assert decode_session_token(token)["sub"]


def test_unknown_secret_rejected(monkeypatch):
    token = create_session_token(uuid.uuid4(), uuid.uuid4())
    monkeypatch.setattr(settings, "JWT_SECRET", "rotated-secret-0123456789-abcdefghij")
    monkeypatch.setattr(settings, "JWT_SECRET_PREVIOUS", "")
    with pytest.raises(jwt.InvalidTokenError):
        decode_session_token(token)


def test_expired_token_rejected():
    token = create_session_token(uuid.uuid4(), uuid.uuid4(), expires_hours=-1)
    with pytest.raises(jwt.ExpiredSignatureError):
        decode_session_token(token)


def test_opaque_tokens():
    token = generate_token()
    assert len(token) >= 43
    assert token != generate_token()
    digest = hash_token(token)
    assert re.fullmatch(r"[0-9a-f]{64}", digest)
    assert digest == hash_token(token)
