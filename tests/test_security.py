from datetime import timedelta

import pytest
from bson import ObjectId
from jose import jwt

from library_api.exceptions import (
    ForbiddenError,
    MisconfiguredError,
    UnauthenticatedError,
)
from library_api.models import UserModel
from library_api.security import (
    ALGORITHM,
    create_access_token,
    decode_access_token,
    get_current_admin,
)


def test_token_round_trip_carries_user_id():
    user_id = str(ObjectId())
    token = create_access_token(user_id)

    assert decode_access_token(token) == user_id
    claims = jwt.get_unverified_claims(token)
    assert set(claims) == {"userId", "exp"}


def test_token_expires_after_seven_days():
    token = create_access_token(str(ObjectId()))
    issued = jwt.get_unverified_claims(token)["exp"]
    shorter = jwt.get_unverified_claims(
        create_access_token(str(ObjectId()), timedelta(days=6))
    )["exp"]

    assert issued - shorter == pytest.approx(timedelta(days=1).total_seconds(), abs=5)


def test_expired_token_rejected():
    token = create_access_token(str(ObjectId()), timedelta(seconds=-1))

    with pytest.raises(UnauthenticatedError):
        decode_access_token(token)


def test_foreign_signature_rejected():
    token = jwt.encode({"userId": str(ObjectId())}, "another-secret", algorithm=ALGORITHM)

    with pytest.raises(UnauthenticatedError):
        decode_access_token(token)


def test_malformed_token_rejected():
    with pytest.raises(UnauthenticatedError):
        decode_access_token("not.a.token")


def test_token_without_user_rejected():
    token = jwt.encode({"sub": "someone"}, "test-secret", algorithm=ALGORITHM)

    with pytest.raises(UnauthenticatedError):
        decode_access_token(token)


def test_missing_secret_is_misconfigured(monkeypatch):
    monkeypatch.delenv("JWT_SECRET")

    with pytest.raises(MisconfiguredError):
        create_access_token(str(ObjectId()))
    with pytest.raises(MisconfiguredError):
        decode_access_token("whatever")


@pytest.mark.asyncio
async def test_admin_guard(make_user):
    admin = UserModel(**make_user(role="admin"))
    member = UserModel(**make_user())

    assert await get_current_admin(admin) is admin
    with pytest.raises(ForbiddenError):
        await get_current_admin(member)
