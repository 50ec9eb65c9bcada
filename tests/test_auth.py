import asyncio
import time

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from soundrent.auth import get_current_user
from soundrent.config import SUPABASE_JWT_AUDIENCE, SUPABASE_JWT_SECRET


def bearer(claims, secret=SUPABASE_JWT_SECRET):
    token = jwt.encode(claims, secret, algorithm="HS256")
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def claims(**overrides):
    data = {
        "sub": "user-123",
        "email": "ops@soundrent.fr",
        "role": "authenticated",
        "aud": SUPABASE_JWT_AUDIENCE,
        "exp": int(time.time()) + 3600,
    }
    data.update(overrides)
    return data


def test_valid_token():
    user = asyncio.run(get_current_user(bearer(claims())))

    assert user.id == "user-123"
    assert user.email == "ops@soundrent.fr"


def test_missing_credentials():
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(get_current_user(None))
    assert exc_info.value.status_code == 401


def test_expired_token_flagged():
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(get_current_user(bearer(claims(exp=int(time.time()) - 10))))

    assert exc_info.value.status_code == 401
    assert exc_info.value.headers == {"X-Token-Expired": "true"}


def test_forged_token():
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(get_current_user(bearer(claims(), secret="someone-else")))
    assert exc_info.value.status_code == 401


def test_wrong_audience():
    with pytest.raises(HTTPException):
        asyncio.run(get_current_user(bearer(claims(aud="anon"))))


def test_token_without_subject():
    data = claims()
    del data["sub"]
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(get_current_user(bearer(data)))
    assert exc_info.value.detail == "Invalid token claims"
