"""Protected resource and authorization server metadata discovery.

Authorization server metadata can live at two competing well-known
locations (RFC 8414 and OpenID Connect Discovery), and for issuers with a
path component the suffix is either inserted before the path or appended
after it. :func:`build_as_metadata_discovery_attempts` produces the fixed,
ordered candidate list; :func:`resolve_as_metadata` walks it until one
candidate yields a JSON object.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlsplit

import httpx

from .auth_fetch import auth_fetch, build_prm_url, client_scope
from .models import DiscoveryAttempt, DiscoveryKind, DiscoveryResult, DiscoveryVariant
from .observation import AS_WELL_KNOWN, OIDC_WELL_KNOWN

logger = logging.getLogger(__name__)


def build_as_metadata_discovery_attempts(issuer: str) -> List[DiscoveryAttempt]:
    """Build the ordered AS metadata URLs to try for an issuer.

    Root issuers yield RFC 8414 then OIDC at the origin. Issuers with a
    path ``P`` yield RFC 8414 path-insert, OIDC path-insert, then OIDC
    path-append (with a trailing slash on ``P`` stripped).

    Args:
        issuer: Authorization server issuer URL

    Returns:
        Discovery attempts in the order they must be tried
    """
    parts = urlsplit(issuer)
    origin = f"{parts.scheme}://{parts.netloc}"
    path = parts.path

    if path in ("", "/"):
        return [
            DiscoveryAttempt(
                url=f"{origin}{AS_WELL_KNOWN}",
                kind=DiscoveryKind.RFC8414,
                variant=DiscoveryVariant.ROOT,
            ),
            DiscoveryAttempt(
                url=f"{origin}{OIDC_WELL_KNOWN}",
                kind=DiscoveryKind.OIDC,
                variant=DiscoveryVariant.ROOT,
            ),
        ]

    trimmed = path[:-1] if path.endswith("/") else path
    return [
        DiscoveryAttempt(
            url=f"{origin}{AS_WELL_KNOWN}{path}",
            kind=DiscoveryKind.RFC8414,
            variant=DiscoveryVariant.PATH_INSERT,
        ),
        DiscoveryAttempt(
            url=f"{origin}{OIDC_WELL_KNOWN}{path}",
            kind=DiscoveryKind.OIDC,
            variant=DiscoveryVariant.PATH_INSERT,
        ),
        DiscoveryAttempt(
            url=f"{origin}{trimmed}{OIDC_WELL_KNOWN}",
            kind=DiscoveryKind.OIDC,
            variant=DiscoveryVariant.PATH_APPEND,
        ),
    ]


async def _fetch_json_object(url: str, client: httpx.AsyncClient) -> Optional[Dict[str, Any]]:
    """Return the JSON object at ``url`` or None on any defect."""
    try:
        response = await auth_fetch(url, client=client)
    except httpx.HTTPError as e:
        logger.debug(f"Discovery request to {url} failed: {e}")
        return None
    if response.status != 200:
        logger.debug(f"Discovery request to {url} returned {response.status}")
        return None
    if response.json_object is None:
        logger.debug(f"Discovery response from {url} is not a JSON object")
        return None
    return response.json_object


async def try_discovery_attempts(
    attempts: Sequence[DiscoveryAttempt],
    client: Optional[httpx.AsyncClient] = None,
    as_url: Optional[str] = None,
) -> DiscoveryResult:
    """Try attempts strictly in order until one returns a JSON object.

    Per-attempt defects are swallowed; only exhaustion is reported, with
    every tried URL attached.
    """
    tried: List[str] = []
    async with client_scope(client) as http:
        for attempt in attempts:
            tried.append(attempt.url)
            metadata = await _fetch_json_object(attempt.url, http)
            if metadata is not None:
                logger.debug(f"AS metadata found at {attempt.url} ({attempt.kind.value} {attempt.variant.value})")
                return DiscoveryResult(
                    success=True,
                    metadata=metadata,
                    url=attempt.url,
                    is_oidc=attempt.kind == DiscoveryKind.OIDC,
                    as_url=as_url,
                    tried_urls=tried,
                )

    return DiscoveryResult(
        success=False,
        as_url=as_url,
        tried_urls=tried,
        error=f"No AS metadata found at {' or '.join(tried)}",
    )


async def resolve_as_metadata(issuer: str, client: Optional[httpx.AsyncClient] = None) -> DiscoveryResult:
    """Resolve authorization server metadata for an issuer."""
    return await try_discovery_attempts(
        build_as_metadata_discovery_attempts(issuer), client=client, as_url=issuer
    )


async def fetch_prm(server_url: str, client: Optional[httpx.AsyncClient] = None) -> DiscoveryResult:
    """Fetch Protected Resource Metadata, path-based location first.

    Args:
        server_url: MCP server URL
        client: HTTP client to use

    Returns:
        Result whose ``metadata`` is the PRM document on success
    """
    path_based_url = build_prm_url(server_url, True)
    root_url = build_prm_url(server_url, False)
    candidates = [path_based_url]
    if root_url != path_based_url:
        candidates.append(root_url)

    tried: List[str] = []
    async with client_scope(client) as http:
        for url in candidates:
            tried.append(url)
            prm = await _fetch_json_object(url, http)
            if prm is not None:
                return DiscoveryResult(success=True, metadata=prm, url=url, tried_urls=tried)

    return DiscoveryResult(
        success=False,
        tried_urls=tried,
        error=f"No valid PRM found at {path_based_url} or {root_url}",
    )


async def fetch_as_metadata(server_url: str, client: Optional[httpx.AsyncClient] = None) -> DiscoveryResult:
    """Fetch AS metadata for the first authorization server named in the PRM."""
    async with client_scope(client) as http:
        prm_result = await fetch_prm(server_url, client=http)
        if not prm_result.success or not prm_result.metadata:
            return DiscoveryResult(
                success=False,
                tried_urls=prm_result.tried_urls,
                error=prm_result.error or "Failed to fetch PRM",
            )

        servers = prm_result.metadata.get("authorization_servers")
        if not isinstance(servers, list) or not servers or not isinstance(servers[0], str):
            return DiscoveryResult(success=False, error="PRM missing authorization_servers array")

        return await resolve_as_metadata(servers[0], client=http)
