"""Observation and classification of outbound HTTP traffic.

The conformance-side client sends every request through
:class:`ObservingTransport`. Each request/response pair is recorded as an
:class:`ObservedRequest`, classified by URL and method, and delivered to a
sink. Assertion logic only ever looks at that observation stream, never at
transport mechanics.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

import httpx

from .models import AuthChallenge, ObservedRequest, RequestType

logger = logging.getLogger(__name__)

PRM_WELL_KNOWN = "/.well-known/oauth-protected-resource"
AS_WELL_KNOWN = "/.well-known/oauth-authorization-server"
OIDC_WELL_KNOWN = "/.well-known/openid-configuration"

SENSITIVE_HEADERS = {"authorization", "cookie", "proxy-authorization"}

_PARAM_KEY = re.compile(r"^([^=\s]+)\s*=")
_UNQUOTED_VALUE = re.compile(r"^([^,\s]+)")

ObservationSink = Callable[[ObservedRequest], None]


def classify_request(method: str, url: str) -> RequestType:
    """Classify a request by URL path and method.

    Rules are evaluated in priority order; the first match wins.
    """
    path = urlsplit(url).path
    is_post = method.upper() == "POST"

    if PRM_WELL_KNOWN in path:
        return RequestType.PRM_DISCOVERY
    if AS_WELL_KNOWN in path or OIDC_WELL_KNOWN in path:
        return RequestType.AS_METADATA
    if is_post and "/register" in path:
        return RequestType.DCR_REGISTRATION
    if is_post and "/token" in path:
        return RequestType.TOKEN_REQUEST
    if "/authorize" in path:
        return RequestType.AUTHORIZATION
    if is_post and "/mcp" in path:
        return RequestType.PROTOCOL_REQUEST
    return RequestType.UNKNOWN


def _read_quoted(text: str) -> tuple:
    """Read a quoted-string starting at ``text[0] == '"'``.

    Returns the unescaped value and the remainder after the closing quote.
    """
    value = []
    i = 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] == '"':
            value.append('"')
            i += 2
            continue
        if ch == '"':
            return "".join(value), text[i + 1:]
        value.append(ch)
        i += 1
    # Unterminated quote: take everything that is left
    return "".join(value), ""


def parse_www_authenticate(header: str) -> AuthChallenge:
    """Parse a WWW-Authenticate header into scheme and parameters.

    The scheme is the first whitespace-delimited token. Parameters are
    ``key=value`` pairs separated by commas and whitespace, where the value
    is a quoted string (``\\"`` unescapes to ``"``) or an unquoted token.
    Parsing stops at the first segment that is not a ``key=`` pair.

    Args:
        header: Raw header value

    Returns:
        Parsed challenge with lowercased parameter names
    """
    header = header.strip()
    parts = header.split(None, 1)
    scheme = parts[0] if parts else ""
    rest = parts[1] if len(parts) > 1 else ""

    params: Dict[str, str] = {}
    while rest:
        rest = rest.lstrip(" \t\r\n,")
        match = _PARAM_KEY.match(rest)
        if not match:
            break
        key = match.group(1).lower()
        rest = rest[match.end():].lstrip()

        if rest.startswith('"'):
            value, rest = _read_quoted(rest)
        else:
            value_match = _UNQUOTED_VALUE.match(rest)
            value = value_match.group(1) if value_match else ""
            rest = rest[len(value):]
        params[key] = value

    return AuthChallenge(scheme=scheme, params=params)


def sanitize_headers(headers: httpx.Headers) -> Dict[str, str]:
    """Snapshot headers with credentials masked."""
    sanitized = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            scheme = value.split(" ", 1)[0] if " " in value else ""
            sanitized[key] = f"{scheme} [REDACTED]".strip()
        else:
            sanitized[key] = value
    return sanitized


def parse_body(response: httpx.Response) -> Any:
    """Best-effort body parse: JSON if possible, otherwise text."""
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class RequestObserver:
    """Sink collecting observed requests for one scenario invocation."""

    def __init__(self):
        self.requests: List[ObservedRequest] = []

    def record(self, observed: ObservedRequest) -> None:
        logger.debug(
            f"Observed {observed.method} {observed.url} -> {observed.response_status} "
            f"({observed.request_type.value})"
        )
        self.requests.append(observed)

    def of_type(self, request_type: RequestType) -> List[ObservedRequest]:
        return [r for r in self.requests if r.request_type == request_type]

    def first(self, request_type: RequestType) -> Optional[ObservedRequest]:
        matches = self.of_type(request_type)
        return matches[0] if matches else None

    def __len__(self) -> int:
        return len(self.requests)


class ObservingTransport(httpx.AsyncBaseTransport):
    """httpx transport that records every request/response pair.

    The response body is buffered once as raw bytes. The observer and the
    caller each get their own :class:`httpx.Response` over those bytes, so
    reading one never consumes the other.
    """

    def __init__(
        self,
        sink: ObservationSink,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the observing transport.

        Args:
            sink: Callable receiving each observation
            transport: Wrapped transport (defaults to a plain HTTP transport)
        """
        self._sink = sink
        self._transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        # Transport errors propagate to the caller untouched
        response = await self._transport.handle_async_request(request)
        try:
            content = await response.aread()
        finally:
            await response.aclose()

        # The buffered body is already decoded, so the views must not
        # advertise the original encoding or length.
        view_headers = httpx.Headers(response.headers)
        for name in ("content-encoding", "content-length", "transfer-encoding"):
            if name in view_headers:
                del view_headers[name]

        observer_view = httpx.Response(
            status_code=response.status_code,
            headers=view_headers,
            content=content,
            request=request,
        )

        challenge = None
        www_authenticate = response.headers.get("www-authenticate")
        if www_authenticate:
            challenge = parse_www_authenticate(www_authenticate)

        self._sink(
            ObservedRequest(
                method=request.method,
                url=str(request.url),
                request_headers=sanitize_headers(request.headers),
                response_status=response.status_code,
                response_headers=dict(response.headers.items()),
                response_body=parse_body(observer_view),
                challenge=challenge,
                request_type=classify_request(request.method, str(request.url)),
            )
        )

        return httpx.Response(
            status_code=response.status_code,
            headers=view_headers,
            content=content,
            request=request,
            extensions=response.extensions,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()
