"""Tests for JWT assertion signing and validation."""

import pytest

from mcp_conformance.assertions import (
    ID_JAG_TYP,
    generate_signing_key,
    private_key_pem,
    sign_jwt,
    verify_jwt,
)
from mcp_conformance.exceptions import InvalidAssertionError


@pytest.fixture(scope="module")
def rsa_key():
    return generate_signing_key("RS256")


class TestSignAndVerify:
    """Test sign_jwt and verify_jwt."""

    def test_claims_validated(self, rsa_key):
        token = sign_jwt({"iss": "client", "sub": "client", "aud": "https://as.test/token"}, rsa_key)

        claims = verify_jwt(
            token,
            rsa_key,
            claims_options={
                "iss": {"essential": True, "value": "client"},
                "aud": {"essential": True, "value": "https://as.test/token"},
            },
        )

        assert claims["sub"] == "client"
        assert claims["exp"] - claims["iat"] == 300
        assert claims["jti"]

    def test_explicit_claims_win(self, rsa_key):
        token = sign_jwt({"iss": "client", "jti": "fixed"}, rsa_key)

        assert verify_jwt(token, rsa_key)["jti"] == "fixed"

    def test_typ_header(self, rsa_key):
        token = sign_jwt({"iss": "idp"}, rsa_key, typ=ID_JAG_TYP)

        assert verify_jwt(token, rsa_key).header["typ"] == ID_JAG_TYP

    def test_pem_key(self, rsa_key):
        token = sign_jwt({"iss": "client"}, private_key_pem(rsa_key))

        assert verify_jwt(token, rsa_key)["iss"] == "client"

    def test_es256(self):
        key = generate_signing_key("ES256")
        token = sign_jwt({"iss": "idp"}, key, algorithm="ES256")

        assert verify_jwt(token, key, algorithms=["ES256"])["iss"] == "idp"

    def test_wrong_key(self, rsa_key):
        token = sign_jwt({"iss": "client"}, generate_signing_key("RS256"))

        with pytest.raises(InvalidAssertionError):
            verify_jwt(token, rsa_key)

    def test_wrong_audience(self, rsa_key):
        token = sign_jwt({"iss": "client", "aud": "https://elsewhere.test"}, rsa_key)

        with pytest.raises(InvalidAssertionError):
            verify_jwt(token, rsa_key, claims_options={"aud": {"essential": True, "value": "https://as.test"}})

    def test_missing_essential_claim(self, rsa_key):
        token = sign_jwt({"iss": "client"}, rsa_key)

        with pytest.raises(InvalidAssertionError):
            verify_jwt(token, rsa_key, claims_options={"sub": {"essential": True}})

    def test_expired(self, rsa_key):
        token = sign_jwt({"iss": "client"}, rsa_key, lifetime=-60)

        with pytest.raises(InvalidAssertionError):
            verify_jwt(token, rsa_key)

    def test_disallowed_algorithm(self, rsa_key):
        token = sign_jwt({"iss": "client"}, rsa_key)

        with pytest.raises(InvalidAssertionError):
            verify_jwt(token, rsa_key, algorithms=["ES256"])
