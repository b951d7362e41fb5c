"""OAuth grant identifiers and signed JWT assertions.

Client credentials with ``private_key_jwt`` and the cross-app access flow
both exchange short-lived JWTs. Signing and validation go through
:class:`authlib.jose.JsonWebToken` so the harness and the reference client
agree on one implementation.
"""

import logging
import secrets
import time
from typing import Any, Dict, Optional, Sequence

from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError

from .exceptions import InvalidAssertionError

logger = logging.getLogger(__name__)

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"
GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_TOKEN_EXCHANGE = "urn:ietf:params:oauth:grant-type:token-exchange"
GRANT_JWT_BEARER = "urn:ietf:params:oauth:grant-type:jwt-bearer"

TOKEN_TYPE_ID_TOKEN = "urn:ietf:params:oauth:token-type:id_token"
TOKEN_TYPE_ID_JAG = "urn:ietf:params:oauth:token-type:id-jag"
CLIENT_ASSERTION_TYPE_JWT = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"

ID_JAG_TYP = "oauth-id-jag+jwt"
OFFLINE_ACCESS_SCOPE = "offline_access"

ASSERTION_LIFETIME = 300


def generate_signing_key(algorithm: str = "RS256"):
    """Create a private JWK for ``algorithm`` (``RS*`` or ``ES256``)."""
    if algorithm.startswith("ES"):
        return JsonWebKey.generate_key("EC", "P-256", is_private=True)
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


def private_key_pem(key) -> str:
    return key.as_pem(is_private=True).decode("ascii")


def sign_jwt(
    claims: Dict[str, Any],
    key: Any,
    algorithm: str = "RS256",
    typ: Optional[str] = None,
    lifetime: int = ASSERTION_LIFETIME,
) -> str:
    """Sign ``claims`` into a compact JWT.

    ``iat``, ``exp`` and ``jti`` are filled in unless ``claims`` already
    carries them.

    Args:
        claims: Token claims
        key: Private key as a JWK or PEM string
        algorithm: JWS algorithm
        typ: Optional ``typ`` header value
        lifetime: Seconds until expiry

    Returns:
        The encoded token
    """
    header: Dict[str, Any] = {"alg": algorithm}
    if typ:
        header["typ"] = typ
    now = int(time.time())
    payload = {"iat": now, "exp": now + lifetime, "jti": secrets.token_urlsafe(16)}
    payload.update(claims)
    token = JsonWebToken([algorithm]).encode(header, payload, key)
    return token.decode("ascii")


def verify_jwt(
    token: str,
    key: Any,
    algorithms: Sequence[str] = ("RS256",),
    claims_options: Optional[Dict[str, Any]] = None,
):
    """Decode ``token`` and validate its claims.

    Args:
        token: Compact JWT
        key: Verification key as a JWK or PEM string
        algorithms: Accepted JWS algorithms
        claims_options: authlib claim rules (``essential``, ``value``, ``values``)

    Returns:
        The validated claims; the JOSE header is on ``claims.header``

    Raises:
        InvalidAssertionError: If the signature or any claim does not validate
    """
    try:
        claims = JsonWebToken(list(algorithms)).decode(token, key, claims_options=claims_options or {})
        claims.validate()
    except (JoseError, ValueError) as e:
        logger.debug(f"JWT validation failed: {e}")
        raise InvalidAssertionError(str(e)) from e
    return claims
