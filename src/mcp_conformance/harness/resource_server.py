"""Fake MCP resource server protected by bearer tokens."""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from ..checks import CheckSink
from ..config import get_config
from ..models import CheckStatus
from ..observation import PRM_WELL_KNOWN
from ..spec_references import SpecReferences
from .tokens import TokenVerifier

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"
PATH_BASED_PRM = f"{PRM_WELL_KNOWN}{MCP_PATH}"

SERVER_INFO = {"name": "mcp-conformance-test-server", "version": "1.0.0"}

TOOLS = [
    {
        "name": "echo",
        "description": "Echo back the provided message",
        "inputSchema": {
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
        },
    }
]


class ResourceServerOptions(BaseModel):
    """Knobs for the fake resource server.

    ``prm_path`` of ``None`` serves no protected resource metadata at all.
    ``required_scopes`` apply to every request; ``method_scopes`` replaces
    them for individual JSON-RPC methods. A token lacking a required scope
    gets a 403 ``insufficient_scope`` challenge.
    """

    prm_path: Optional[str] = PATH_BASED_PRM
    include_prm_in_www_auth: bool = True
    scopes_supported: Optional[List[str]] = None
    required_scopes: Optional[List[str]] = None
    include_scope_in_www_auth: bool = True
    method_scopes: Dict[str, List[str]] = Field(default_factory=dict)
    reject_root_prm: bool = False


class JSONRPCError(Exception):
    """JSON-RPC error carrying a numeric code."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def handle_mcp_method(method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    """Dispatch one JSON-RPC method and return its result.

    Raises:
        JSONRPCError: If the method is not supported
    """
    if method == "initialize":
        return {
            "protocolVersion": params.get("protocolVersion") or get_config().MCP_PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": SERVER_INFO,
        }
    if method == "tools/list":
        return {"tools": TOOLS}
    if method == "tools/call":
        arguments = params.get("arguments") or {}
        return {"content": [{"type": "text", "text": str(arguments.get("message", ""))}]}
    if method == "ping":
        return {}
    raise JSONRPCError(-32601, f"Method not found: {method}")


def _rpc_error(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def create_resource_server(
    sink: CheckSink,
    base_url: Callable[[], str],
    auth_server_url: Callable[[], str],
    options: Optional[ResourceServerOptions] = None,
    token_verifier: Optional[TokenVerifier] = None,
) -> FastAPI:
    """Create the fake MCP resource server app.

    Args:
        sink: Check sink of the owning scenario
        base_url: Callable returning this server's base URL once bound
        auth_server_url: Callable returning the issuer advertised in PRM
        options: PRM placement and challenge knobs
        token_verifier: Verifier for presented bearer tokens

    Returns:
        FastAPI application
    """
    options = options or ResourceServerOptions()
    verifier = token_verifier or TokenVerifier(sink)
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    def prm_document() -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "resource": f"{base_url()}{MCP_PATH}",
            "authorization_servers": [auth_server_url()],
        }
        if options.scopes_supported is not None:
            document["scopes_supported"] = options.scopes_supported
        return document

    def challenge(error: Optional[str] = None, scopes: Optional[List[str]] = None) -> Response:
        # An explicit scope list means insufficient_scope, which always names the scope
        params = []
        if options.include_prm_in_www_auth and options.prm_path:
            params.append(f'resource_metadata="{base_url()}{options.prm_path}"')
        if scopes:
            params.append(f'scope="{" ".join(scopes)}"')
        elif options.required_scopes and options.include_scope_in_www_auth:
            params.append(f'scope="{" ".join(options.required_scopes)}"')
        if error:
            params.append(f'error="{error}"')
        header = "Bearer " + ", ".join(params) if params else "Bearer"
        if error == "insufficient_scope":
            return JSONResponse(
                status_code=403,
                content={"error": error, "error_description": f"Required scope: {' '.join(scopes or [])}"},
                headers={"WWW-Authenticate": header},
            )
        return JSONResponse(
            status_code=401,
            content={"error": error or "unauthorized", "error_description": "Authorization required"},
            headers={"WWW-Authenticate": header},
        )

    async def protected_resource_metadata():
        if options.prm_path == PATH_BASED_PRM:
            sink.add(
                "prm-pathbased-requested",
                "PRMPathBasedRequested",
                "Client requested PRM metadata at the path-based location",
                CheckStatus.SUCCESS,
                details={"path": options.prm_path},
                spec_references=[SpecReferences.RFC_9728_PRM_DISCOVERY, SpecReferences.MCP_AUTH_PRM_DISCOVERY],
            )
        elif options.prm_path == PRM_WELL_KNOWN:
            sink.add(
                "prm-root-requested",
                "PRMRootRequested",
                "Client requested PRM metadata at the root location",
                CheckStatus.INFO,
                details={"path": options.prm_path},
                spec_references=[SpecReferences.RFC_9728_PRM_DISCOVERY],
            )
        else:
            sink.add(
                "prm-custom-location-requested",
                "PRMCustomLocationRequested",
                "Client requested PRM metadata at the location advertised in WWW-Authenticate",
                CheckStatus.SUCCESS,
                details={"path": options.prm_path},
                spec_references=[SpecReferences.RFC_9728_WWW_AUTHENTICATE],
            )
        return prm_document()

    if options.prm_path:
        app.add_api_route(options.prm_path, protected_resource_metadata, methods=["GET"])

    if options.reject_root_prm and options.prm_path != PRM_WELL_KNOWN:

        @app.get(PRM_WELL_KNOWN)
        async def root_prm_rejected():
            sink.add(
                "prm-priority-order",
                "PRMPriorityOrder",
                "Client should try the path-based PRM location before the root location",
                CheckStatus.FAILURE,
                error_message="Root PRM location requested although the path-based location is available",
                spec_references=[SpecReferences.RFC_9728_PRM_DISCOVERY, SpecReferences.MCP_AUTH_PRM_DISCOVERY],
            )
            return JSONResponse(status_code=404, content={"error": "not_found"})

    @app.post(MCP_PATH)
    async def mcp_endpoint(request: Request):
        authorization = request.headers.get("authorization", "")
        if not authorization.lower().startswith("bearer "):
            logger.debug("Unauthenticated MCP request, sending challenge")
            return challenge()

        token = authorization[7:].strip()
        if not verifier.verify(token):
            return challenge("invalid_token")

        try:
            rpc_request = json.loads(await request.body())
        except ValueError as e:
            return JSONResponse(content=_rpc_error(None, -32700, f"Parse error: {e}"))
        if not isinstance(rpc_request, dict) or "method" not in rpc_request:
            return JSONResponse(content=_rpc_error(None, -32600, "Invalid Request"))

        method = rpc_request["method"]
        required = options.method_scopes.get(method, options.required_scopes or [])
        missing = verifier.missing_scopes(token, required)
        if missing:
            logger.debug(f"Token lacks {missing} for {method}, sending insufficient_scope")
            return challenge("insufficient_scope", scopes=list(required))

        if "id" not in rpc_request:
            # Notifications get no response body
            return Response(status_code=202)

        request_id = rpc_request["id"]
        try:
            result = handle_mcp_method(method, rpc_request.get("params") or {})
        except JSONRPCError as e:
            return JSONResponse(content=_rpc_error(request_id, e.code, e.message))
        return JSONResponse(content={"jsonrpc": "2.0", "id": request_id, "result": result})

    return app
