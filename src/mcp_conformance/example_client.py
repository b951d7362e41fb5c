"""Reference MCP client used as the implementation under test for client runs.

The runner invokes it as ``<command> <server_url>`` and passes scenario
context (such as pre-registered credentials) as JSON in the
``MCP_CONFORMANCE_CONTEXT`` environment variable.
"""

import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

import click
import httpx
from rich.console import Console

from .assertions import GRANT_CLIENT_CREDENTIALS, GRANT_JWT_BEARER
from .driver import AuthFlowDriver
from .exceptions import AuthFlowError
from .process import CONTEXT_ENV

console = Console(stderr=True)

ECHO_TOOL = "echo"
CLIENT_CREDENTIALS_PREFIX = "auth/client-credentials"


def load_context() -> Dict[str, Any]:
    """Read the scenario context from the environment."""
    raw = os.environ.get(CONTEXT_ENV)
    if not raw:
        return {}
    try:
        context = json.loads(raw)
    except ValueError as e:
        console.print(f"[yellow]Ignoring malformed {CONTEXT_ENV}: {e}[/yellow]")
        return {}
    return context if isinstance(context, dict) else {}


def pre_registered_credentials(context: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if context.get("client_id"):
        return {"client_id": context["client_id"], "client_secret": context.get("client_secret")}
    return None


def driver_options(context: Dict[str, Any]) -> Dict[str, Any]:
    """Keyword arguments for :class:`AuthFlowDriver` derived from the scenario context.

    Cross-app access contexts carry an IdP ID token; client credentials
    contexts are named ``auth/client-credentials-*`` and may carry a
    private key for ``private_key_jwt``.
    """
    options: Dict[str, Any] = {"pre_registered": pre_registered_credentials(context)}
    if context.get("idp_id_token"):
        options["grant_type"] = GRANT_JWT_BEARER
        options["identity_assertion"] = {
            "idp_token_endpoint": context.get("idp_token_endpoint"),
            "idp_id_token": context["idp_id_token"],
            "idp_client_id": context.get("idp_client_id"),
        }
    elif str(context.get("name", "")).startswith(CLIENT_CREDENTIALS_PREFIX) or context.get("private_key_pem"):
        options["grant_type"] = GRANT_CLIENT_CREDENTIALS
        if context.get("private_key_pem"):
            options["private_key_pem"] = context["private_key_pem"]
            options["signing_algorithm"] = context.get("signing_algorithm") or "RS256"
    return options


def keepalive_from_context(context: Dict[str, Any]) -> Tuple[float, int]:
    """Outlive the access token named in the context, once per refresh round."""
    lifetime = context.get("access_token_lifetime")
    if not isinstance(lifetime, (int, float)) or lifetime <= 0:
        return 0, 0
    return lifetime + 1, int(context.get("refresh_rounds") or 1)


async def run_session(driver: AuthFlowDriver, keepalive: float = 0, rounds: int = 1) -> List[str]:
    """Connect, call the echo tool when offered and optionally stay around.

    With ``keepalive`` the client waits that many seconds and lists the
    tools again, ``rounds`` times, which exercises token refresh against
    short-lived tokens.

    Returns:
        Names of the tools the server lists
    """
    result = await driver.connect()
    names = [tool.get("name") for tool in result.get("tools", []) if isinstance(tool, dict)]
    if ECHO_TOOL in names:
        await driver.call_tool(ECHO_TOOL, {"message": "conformance"})
    if keepalive > 0:
        for _ in range(rounds):
            await asyncio.sleep(keepalive)
            await driver.call("tools/list", {})
    return names


@click.command()
@click.argument("server_url")
@click.option("--interactive", is_flag=True, help="Complete authorization in a browser")
@click.option(
    "--keepalive",
    type=float,
    default=None,
    help="Seconds to stay connected before a second request (defaults to the token lifetime in the context)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(server_url: str, interactive: bool, keepalive: Optional[float], verbose: bool):
    """Connect to an OAuth-protected MCP server and list its tools."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format="%(message)s")
    context = load_context()
    seconds, rounds = keepalive_from_context(context)
    if keepalive is not None:
        seconds, rounds = keepalive, max(rounds, 1)

    async def run_client():
        async with AuthFlowDriver(server_url, interactive=interactive, **driver_options(context)) as driver:
            return await run_session(driver, seconds, rounds)

    try:
        tools = asyncio.run(run_client())
    except (AuthFlowError, httpx.HTTPError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    click.echo(f"Connected; tools: {', '.join(tools) if tools else '(none)'}")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
