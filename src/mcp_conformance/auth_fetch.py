"""JSON-oriented HTTP helper used by server-targeting scenarios."""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel

from .config import get_config
from .models import AuthChallenge
from .observation import PRM_WELL_KNOWN, parse_www_authenticate


class AuthFetchResponse(BaseModel):
    """Response of :func:`auth_fetch` with the body parsed when possible."""

    status: int
    headers: Dict[str, str]
    body: Any = None
    raw_body: str = ""
    www_authenticate: Optional[AuthChallenge] = None
    raw_www_authenticate: Optional[str] = None

    @property
    def json_object(self) -> Optional[Dict[str, Any]]:
        """Body if it is a JSON object, else None."""
        return self.body if isinstance(self.body, dict) else None


@asynccontextmanager
async def client_scope(client: Optional[httpx.AsyncClient] = None) -> AsyncIterator[httpx.AsyncClient]:
    """Yield ``client`` or a temporary client that is closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=get_config().AUTH_FETCH_TIMEOUT) as temporary:
        yield temporary


async def auth_fetch(
    url: str,
    method: str = "GET",
    body: Any = None,
    token: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> AuthFetchResponse:
    """Perform a request expecting a JSON response.

    Args:
        url: URL to fetch
        method: HTTP method
        body: JSON-serializable request body
        token: Optional bearer token
        headers: Extra request headers
        client: HTTP client to use (a temporary one is created if omitted)

    Returns:
        Parsed response

    Raises:
        httpx.HTTPError: On transport failure or timeout
    """
    request_headers = {"Accept": "application/json"}
    if body is not None:
        request_headers["Content-Type"] = "application/json"
        # Streamable HTTP servers require both media types to be acceptable
        request_headers["Accept"] = "application/json, text/event-stream"
    if token:
        request_headers["Authorization"] = f"Bearer {token}"
    if headers:
        request_headers.update(headers)

    async with client_scope(client) as http:
        response = await http.request(
            method,
            url,
            headers=request_headers,
            content=json.dumps(body) if body is not None else None,
        )

    raw_body = response.text
    try:
        parsed: Any = json.loads(raw_body)
    except ValueError:
        parsed = raw_body

    raw_challenge = response.headers.get("www-authenticate")
    return AuthFetchResponse(
        status=response.status_code,
        headers=dict(response.headers.items()),
        body=parsed,
        raw_body=raw_body,
        www_authenticate=parse_www_authenticate(raw_challenge) if raw_challenge else None,
        raw_www_authenticate=raw_challenge,
    )


def get_base_url(url: str) -> str:
    """Scheme and authority of ``url``."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def build_prm_url(server_url: str, path_based: bool) -> str:
    """Build the RFC 9728 well-known PRM URL for a server.

    The path-based form inserts the well-known suffix before the server
    path; the root form drops the path.
    """
    path = urlsplit(server_url).path
    base = get_base_url(server_url)
    if path_based and path not in ("", "/"):
        return f"{base}{PRM_WELL_KNOWN}{path}"
    return f"{base}{PRM_WELL_KNOWN}"
