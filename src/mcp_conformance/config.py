"""Centralized configuration management for MCP Conformance."""

import os
from functools import lru_cache


class Config:
    """Configuration values read from environment variables.

    Values are read when the instance is created so that a ``.env`` file
    loaded by the CLI is honoured.
    """

    def __init__(self):
        # Harness servers
        self.HARNESS_HOST: str = os.getenv('HARNESS_HOST', '127.0.0.1')
        self.HARNESS_READY_TIMEOUT: float = float(os.getenv('HARNESS_READY_TIMEOUT', '10'))
        self.HARNESS_SHUTDOWN_GRACE: float = float(os.getenv('HARNESS_SHUTDOWN_GRACE', '5'))

        # Timeouts
        self.CLIENT_TIMEOUT: float = float(os.getenv('CLIENT_TIMEOUT', '30'))
        self.AUTH_FETCH_TIMEOUT: float = float(os.getenv('AUTH_FETCH_TIMEOUT', '30'))
        self.AUTH_INTERACTIVE_TIMEOUT: float = float(os.getenv('AUTH_INTERACTIVE_TIMEOUT', '300'))  # 5 minutes

        # OAuth client identity
        self.CIMD_CLIENT_METADATA_URL: str = os.getenv(
            'CIMD_CLIENT_METADATA_URL', 'https://conformance-test.local/client-metadata.json'
        )
        self.DEFAULT_REDIRECT_URI: str = os.getenv('DEFAULT_REDIRECT_URI', 'http://localhost:3333/callback')
        self.MCP_PROTOCOL_VERSION: str = os.getenv('MCP_PROTOCOL_VERSION', '2025-06-18')

        # Output
        self.RESULTS_DIR: str = os.getenv('RESULTS_DIR', 'results')
        self.LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO').upper()


@lru_cache()
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config()
