import time

import jwt
import pytest

from collab.core.security import (
    ANONYMOUS_PRINCIPAL,
    AuthenticationError,
    Principal,
    TokenVerifier,
    bearer_token,
    extract_handshake_token,
)


def test_valid_token_yields_principal(verifier, make_token):
    principal = verifier.verify(make_token(sub="u-42", email="dana@example.com", full_name="Dana"))

    assert principal == Principal(id="u-42", email="dana@example.com", full_name="Dana")


def test_name_claim_is_used_without_metadata(verifier, make_token):
    principal = verifier.verify(make_token(full_name=None, name="Dee"))

    assert principal.display_name == "Dee"


def test_expired_token_reports_jwt_expired(verifier, make_token):
    with pytest.raises(AuthenticationError) as excinfo:
        verifier.verify(make_token(exp=int(time.time()) - 60))

    assert excinfo.value.reason == "jwt_expired"


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "not-a-jwt",
        jwt.encode({"sub": "u-1"}, "another-secret", algorithm="HS256"),
        jwt.encode({"email": "nosub@example.com"}, "test-secret", algorithm="HS256"),
    ],
)
def test_bad_tokens_are_unauthorized(verifier, token):
    with pytest.raises(AuthenticationError) as excinfo:
        verifier.verify(token)

    assert excinfo.value.reason == "unauthorized"


def test_audience_is_checked_when_configured(make_token):
    verifier = TokenVerifier(secret="test-secret", audience="authenticated")

    assert verifier.verify(make_token(aud="authenticated")).id == "user-1"
    with pytest.raises(AuthenticationError):
        verifier.verify(make_token(aud="someone-else"))


def test_missing_secret_refuses_unless_anonymous_allowed(make_token):
    with pytest.raises(AuthenticationError):
        TokenVerifier(secret=None).verify(make_token())

    assert TokenVerifier(secret=None, allow_anon=True).verify(None) == ANONYMOUS_PRINCIPAL


def test_display_name_falls_back_to_email_then_id():
    assert Principal(id="u", email="sam@example.com").display_name == "sam"
    assert Principal(id="u", email="").display_name == "u"


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Bearer abc", "abc"),
        ("bearer  abc ", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        (None, None),
    ],
)
def test_bearer_token(header, expected):
    assert bearer_token(header) == expected


def test_handshake_prefers_auth_payload():
    environ = {"asgi.scope": {"query_string": b"token=from-query"}}

    assert extract_handshake_token(environ, {"token": "from-auth"}) == "from-auth"
    assert extract_handshake_token(environ, {"token": ""}) == "from-query"


def test_handshake_reads_wsgi_query_string():
    assert extract_handshake_token({"QUERY_STRING": "room=1&token=abc"}, None) == "abc"
    assert extract_handshake_token({"QUERY_STRING": "room=1"}, None) is None
    assert extract_handshake_token({}, "token") is None
