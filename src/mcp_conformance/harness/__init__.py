"""Ephemeral fake servers that client-targeting scenarios stand up."""

from .auth_server import AuthServerOptions, create_auth_server
from .lifecycle import ServerLifecycle
from .resource_server import ResourceServerOptions, create_resource_server
from .tokens import TokenVerifier

__all__ = [
    "AuthServerOptions",
    "ResourceServerOptions",
    "ServerLifecycle",
    "TokenVerifier",
    "create_auth_server",
    "create_resource_server",
]
