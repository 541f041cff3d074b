import uuid
from datetime import datetime, timezone

import jwt
import pytest

from vdex.auth import decode_jwt, sign_id_jwt, sign_user_jwt
from vdex.models import User

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _user():
    return User(
        id=42,
        address="0xabc0000000000000000000000000000000000001",
        public_id=uuid.UUID("12345678-1234-5678-1234-567812345678"),
    )


def test_user_token_round_trip():
    secret = "secret"
    user = _user()
    claims = decode_jwt(sign_user_jwt(user, secret, NOW), secret)
    assert claims["publicId"] == str(user.public_id)
    assert claims["address"] == user.address
    assert claims["expiredAt"] == "2024-03-08T12:00:00Z"
    assert "id" not in claims


def test_id_token_round_trip():
    secret = "secret"
    user = _user()
    claims = decode_jwt(sign_id_jwt(user, secret, NOW), secret)
    assert claims["id"] == 42
    assert claims["address"] == user.address
    assert "publicId" not in claims


def test_token_uses_hs256():
    token = sign_id_jwt(_user(), "secret", NOW)
    assert jwt.get_unverified_header(token)["alg"] == "HS256"


def test_wrong_secret_is_rejected():
    token = sign_user_jwt(_user(), "secret", NOW)
    with pytest.raises(jwt.InvalidSignatureError):
        decode_jwt(token, "token")


def test_garbage_token_is_rejected():
    with pytest.raises(jwt.InvalidTokenError):
        decode_jwt("placeholder", "secret")


def test_default_now_expires_in_future():
    claims = decode_jwt(sign_user_jwt(_user(), "secret"), "secret")
    expires = datetime.fromisoformat(claims["expiredAt"].replace("Z", "+00:00"))
    assert expires > datetime.now(timezone.utc)