"""Bearer token bookkeeping shared by the fake authorization and resource servers."""

import logging
import secrets
import time
from typing import Dict, List, Optional, Sequence

from ..checks import CheckSink
from ..models import CheckStatus
from ..spec_references import SpecReferences

logger = logging.getLogger(__name__)


class TokenVerifier:
    """Issue opaque test tokens and verify them on protected requests.

    Tokens may carry a lifetime; an expired token is rejected with an INFO
    check because presenting it once is normal client behaviour before a
    refresh.
    """

    def __init__(self, sink: CheckSink):
        self.sink = sink
        self._tokens: Dict[str, List[str]] = {}
        self._expires_at: Dict[str, float] = {}

    def issue(self, scopes: Optional[List[str]] = None, expires_in: Optional[float] = None) -> str:
        """Mint a new access token for ``scopes``."""
        token = f"test-token-{secrets.token_hex(16)}"
        self.register(token, scopes, expires_in)
        logger.debug(f"Issued access token with scopes {self._tokens[token]} (expires in {expires_in})")
        return token

    def register(self, token: str, scopes: Optional[List[str]] = None, expires_in: Optional[float] = None) -> None:
        """Accept ``token`` for ``scopes``, optionally for ``expires_in`` seconds."""
        self._tokens[token] = list(scopes or [])
        if expires_in is None:
            self._expires_at.pop(token, None)
        else:
            self._expires_at[token] = time.monotonic() + expires_in

    def scopes_of(self, token: str) -> Optional[List[str]]:
        return self._tokens.get(token)

    def missing_scopes(self, token: str, required: Sequence[str]) -> List[str]:
        """Scopes in ``required`` that ``token`` was not granted."""
        granted = self.scopes_of(token) or []
        return [scope for scope in required if scope not in granted]

    def is_expired(self, token: str) -> bool:
        expires_at = self._expires_at.get(token)
        return expires_at is not None and time.monotonic() >= expires_at

    def verify(self, token: str) -> bool:
        """Check a presented bearer token and record the outcome."""
        if token in self._tokens and self.is_expired(token):
            self.sink.add(
                "expired-bearer-token",
                "ExpiredBearerToken",
                "Client presented an access token past its lifetime",
                CheckStatus.INFO,
                details={"scopes": self._tokens[token]},
                spec_references=[SpecReferences.RFC_6750_ERROR_CODES],
            )
            return False

        if token in self._tokens:
            self.sink.add(
                "valid-bearer-token",
                "ValidBearerToken",
                "Client presented a bearer token issued by the authorization server",
                CheckStatus.SUCCESS,
                details={"scopes": self._tokens[token]},
                spec_references=[SpecReferences.MCP_AUTH_ACCESS_TOKEN],
            )
            return True

        self.sink.add(
            "invalid-bearer-token",
            "InvalidBearerToken",
            "Client presented a bearer token that was never issued",
            CheckStatus.FAILURE,
            error_message="Unknown access token",
            spec_references=[SpecReferences.RFC_6750_BEARER_TOKEN, SpecReferences.MCP_AUTH_ACCESS_TOKEN],
        )
        return False
