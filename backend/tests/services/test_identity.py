"""JWT Identity Provider: token verification and bearer header parsing."""

import jwt
import pytest

from karmafarm.core.errors import AuthError
from karmafarm.infrastructure.identity import JwtIdentityProvider, parse_bearer


@pytest.fixture
def provider():
    return JwtIdentityProvider("unit-secret")


def test_issued_token_verifies_to_subject(provider):
    assert provider.verify(provider.issue_token("bob")) == "bob"


def test_expired_token_rejected(provider):
    token = provider.issue_token("bob", ttl_seconds=-10)
    with pytest.raises(AuthError, match="expired"):
        provider.verify(token)


def test_wrong_secret_rejected(provider):
    token = JwtIdentityProvider("other-secret").issue_token("bob")
    with pytest.raises(AuthError):
        provider.verify(token)


def test_missing_subject_rejected(provider):
    token = jwt.encode({"scope": "chat"}, "unit-secret", algorithm="HS256")
    with pytest.raises(AuthError):
        provider.verify(token)


def test_empty_subject_rejected(provider):
    token = jwt.encode({"sub": ""}, "unit-secret", algorithm="HS256")
    with pytest.raises(AuthError):
        provider.verify(token)


def test_garbage_rejected(provider):
    with pytest.raises(AuthError) as exc_info:
        provider.verify("abc.def")
    assert exc_info.value.http_status == 401


def test_parse_bearer():
    assert parse_bearer("Bearer abc") == "abc"
    assert parse_bearer("bearer   abc  ") == "abc"


@pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer", "Bearer   "])
def test_parse_bearer_rejects(header):
    with pytest.raises(AuthError):
        parse_bearer(header)
