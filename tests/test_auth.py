# =============================================================================
# tests/test_auth.py - Access Token Verification Tests
# =============================================================================
# Tests for app/auth/dependencies.py using HS256 tokens signed with the
# test JWT secret from conftest.
#
# Run with: pytest tests/test_auth.py -v
# =============================================================================

import time
from uuid import UUID, uuid4

import pytest
from fastapi import HTTPException
from jose import jwt

from app.auth.dependencies import decode_access_token

SECRET = "test-jwt-secret"


def make_token(secret: str = SECRET, **overrides) -> str:
    claims = {
        "sub": str(uuid4()),
        "email": "agent@example.com",
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
    }
    claims.update(overrides)
    return jwt.encode(claims, secret, algorithm="HS256")


class TestDecodeAccessToken:

    def test_valid_token(self):
        user_id = str(uuid4())

        user = decode_access_token(make_token(sub=user_id))

        assert user.id == UUID(user_id)
        assert user.email == "agent@example.com"

    def test_expired_token(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(make_token(exp=int(time.time()) - 60))

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token has expired"

    def test_wrong_secret(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(make_token(secret="someone-else"))
        assert exc_info.value.status_code == 401

    def test_wrong_audience(self):
        with pytest.raises(HTTPException):
            decode_access_token(make_token(aud="anon"))

    def test_non_uuid_subject(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(make_token(sub="service-role"))
        assert "malformed user ID" in exc_info.value.detail

    def test_garbage(self):
        with pytest.raises(HTTPException):
            decode_access_token("not.a.jwt")
