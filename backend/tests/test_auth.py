"""
Unit Tests for bearer-token verification

Usage:
    cd backend && pytest tests/test_auth.py -v
"""

import pytest
import sys
import os
import time

from fastapi import HTTPException
from jose import jwt

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fundspace import auth  # noqa: E402

SECRET = "test-secret"


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setattr(auth, "JWT_SECRET", SECRET)


def make_token(**claims) -> str:
    payload = {
        "sub": "user-1",
        "email": "test@example.com",
        "role": "authenticated",
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
    }
    payload.update(claims)
    return jwt.encode(payload, SECRET, algorithm="HS256")


class TestDecodeAccessToken:
    def test_valid_token(self):
        claims = auth.decode_access_token(make_token())
        assert claims["sub"] == "user-1"

    def test_expired_token(self):
        with pytest.raises(HTTPException) as info:
            auth.decode_access_token(make_token(exp=int(time.time()) - 10))
        assert info.value.status_code == 401

    def test_wrong_signature(self):
        token = jwt.encode({"sub": "user-1", "aud": "authenticated"}, "other", algorithm="HS256")
        with pytest.raises(HTTPException):
            auth.decode_access_token(token)

    def test_missing_subject(self):
        with pytest.raises(HTTPException):
            auth.decode_access_token(make_token(sub=""))

    def test_unconfigured_secret(self, monkeypatch):
        monkeypatch.setattr(auth, "JWT_SECRET", "")
        with pytest.raises(HTTPException):
            auth.decode_access_token(make_token())
