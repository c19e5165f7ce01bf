"""Tests for token verification."""

from datetime import timedelta
from uuid import uuid4

import pytest

from healthqueue.core.exceptions import UnauthorizedException
from healthqueue.core.security import (
    authenticate_token,
    create_access_token,
    decode_access_token,
)
from healthqueue.schemas.auth import UserRole


def test_authenticate_builds_principal():
    identity = str(uuid4())
    token = create_access_token({"sub": identity, "role": "doctor", "roles": ["admin"]})

    principal = authenticate_token(token)

    assert principal.identity == identity
    assert principal.role == UserRole.DOCTOR
    assert principal.roles == {UserRole.DOCTOR, UserRole.ADMIN}
    assert principal.is_admin


@pytest.mark.parametrize(
    "claims",
    [
        {"role": "patient"},
        {"sub": 42, "role": "patient"},
        {"sub": "abc"},
        {"sub": "abc", "role": "nurse"},
        {"sub": "abc", "role": "patient", "roles": ["superuser"]},
    ],
)
def test_authenticate_rejects_bad_claims(claims):
    with pytest.raises(UnauthorizedException):
        authenticate_token(create_access_token(claims))


def test_expired_token_is_rejected():
    token = create_access_token(
        {"sub": str(uuid4()), "role": "patient"}, expires_delta=timedelta(seconds=-1)
    )

    assert decode_access_token(token) is None
    with pytest.raises(UnauthorizedException):
        authenticate_token(token)


def test_missing_token_is_rejected():
    with pytest.raises(UnauthorizedException):
        authenticate_token(None)
