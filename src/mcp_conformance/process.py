"""Spawning the client under test."""

import asyncio
import json
import logging
import os
import shlex
from typing import Any, Dict, List, Optional, Sequence, Union

from .models import ClientRunOutput

logger = logging.getLogger(__name__)

CONTEXT_ENV = "MCP_CONFORMANCE_CONTEXT"


def split_command(command: Union[str, Sequence[str]]) -> List[str]:
    """Split a shell-style command string into argv."""
    if isinstance(command, str):
        return shlex.split(command)
    return list(command)


async def run_client_process(
    command: Union[str, Sequence[str]],
    server_url: str,
    context: Optional[Dict[str, Any]] = None,
    timeout: float = 30.0,
) -> ClientRunOutput:
    """Run ``command + [server_url]`` and capture its output.

    Args:
        command: Client command line (string or argv list)
        server_url: URL appended as the last argument
        context: Scenario context, exposed as JSON in ``MCP_CONFORMANCE_CONTEXT``
        timeout: Seconds before the process is killed

    Returns:
        Exit code and captured output. A process that could not be spawned
        reports exit code -1; a killed one has ``timed_out`` set.
    """
    argv = split_command(command) + [server_url]
    env = dict(os.environ)
    if context:
        env[CONTEXT_ENV] = json.dumps(context)

    logger.debug(f"Spawning client: {' '.join(argv)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except OSError as e:
        logger.debug(f"Failed to spawn {argv[0]}: {e}")
        return ClientRunOutput(exit_code=-1, stderr=f"Failed to start client: {e}")

    timed_out = False
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        logger.debug(f"Client exceeded {timeout}s, killing pid {process.pid}")
        process.kill()
        stdout, stderr = await process.communicate()
    finally:
        if process.returncode is None:
            process.kill()
            await process.wait()

    return ClientRunOutput(
        exit_code=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        timed_out=timed_out,
    )
