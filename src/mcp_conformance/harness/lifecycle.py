"""Ephemeral harness server lifecycle.

Each harness server is a hypercorn instance running as an asyncio task on
a free loopback port. ``start`` only returns once the port accepts
connections; ``stop`` is idempotent and safe after a failed ``start``.
"""

import asyncio
import logging
import socket
import time
from typing import Optional

from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig

from ..config import Config, get_config
from ..exceptions import ScenarioStateError, SetupError

logger = logging.getLogger(__name__)


def find_free_port(host: str) -> int:
    """Ask the OS for an unused TCP port on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


async def wait_until_reachable(
    host: str,
    port: int,
    timeout: float,
    task: Optional[asyncio.Task] = None,
    interval: float = 0.05,
) -> None:
    """Poll until ``host:port`` accepts TCP connections.

    Args:
        host: Host to connect to
        port: Port to connect to
        timeout: Deadline in seconds
        task: Server task; if it finishes early the wait is aborted
        interval: Delay between attempts

    Raises:
        SetupError: If the deadline passes or the server task exits
    """
    deadline = time.monotonic() + timeout
    while True:
        if task is not None and task.done():
            error = None if task.cancelled() else task.exception()
            raise SetupError(f"Server on {host}:{port} exited before becoming reachable: {error}")
        try:
            _, writer = await asyncio.open_connection(host, port)
        except OSError:
            if time.monotonic() >= deadline:
                raise SetupError(f"Server on {host}:{port} not reachable within {timeout}s")
            await asyncio.sleep(interval)
            continue
        writer.close()
        await writer.wait_closed()
        return


class ServerLifecycle:
    """Start and stop one ASGI app on an ephemeral port."""

    def __init__(self, name: str = "harness", config: Optional[Config] = None):
        """Initialize the lifecycle.

        Args:
            name: Label used in log messages
            config: Configuration (defaults to the global config)
        """
        self.name = name
        self.config = config or get_config()
        self._task: Optional[asyncio.Task] = None
        self._shutdown: Optional[asyncio.Event] = None
        self._url: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None

    @property
    def url(self) -> str:
        if self._url is None:
            raise ScenarioStateError(f"{self.name} server has not been started")
        return self._url

    def get_url(self) -> str:
        """Callable form of :attr:`url` for app factories."""
        return self.url

    async def start(self, app, host: Optional[str] = None, port: Optional[int] = None) -> str:
        """Serve ``app`` and wait until it is reachable.

        Args:
            app: ASGI application
            host: Bind address (defaults to HARNESS_HOST)
            port: Bind port (defaults to a free ephemeral port)

        Returns:
            Base URL of the running server

        Raises:
            SetupError: If the server does not come up in time
        """
        if self._task is not None:
            raise ScenarioStateError(f"{self.name} server already running")

        host = host or self.config.HARNESS_HOST
        port = port or find_free_port(host)

        hypercorn_config = HypercornConfig()
        hypercorn_config.bind = [f"{host}:{port}"]
        hypercorn_config.accesslog = None
        hypercorn_config.errorlog = logging.getLogger("hypercorn.error")
        hypercorn_config.graceful_timeout = self.config.HARNESS_SHUTDOWN_GRACE

        self._shutdown = asyncio.Event()
        self._url = f"http://{host}:{port}"
        self._task = asyncio.create_task(serve(app, hypercorn_config, shutdown_trigger=self._shutdown.wait))
        logger.debug(f"Starting {self.name} server on {self._url}")

        try:
            await wait_until_reachable(host, port, self.config.HARNESS_READY_TIMEOUT, task=self._task)
        except BaseException:
            await self.stop()
            raise

        logger.debug(f"{self.name} server ready on {self._url}")
        return self._url

    async def stop(self) -> None:
        """Shut the server down. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is None:
            return

        if self._shutdown is not None:
            self._shutdown.set()
        done, _ = await asyncio.wait({task}, timeout=self.config.HARNESS_SHUTDOWN_GRACE)
        if not done:
            logger.warning(f"{self.name} server did not stop gracefully, cancelling")
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        elif not task.cancelled() and task.exception() is not None:
            logger.debug(f"{self.name} server task ended with error: {task.exception()}")

        logger.debug(f"Stopped {self.name} server on {self._url}")
        self._url = None
        self._shutdown = None
