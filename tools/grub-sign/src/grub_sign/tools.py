"""Subprocess helpers shared by the external service adapters."""

import logging
import os
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Union

from .errors import ExternalToolFailure

logger = logging.getLogger(__name__)

Arg = Union[str, Path]


def run(
    *args: Arg,
    timeout: Optional[float] = None,
    capture: bool = True,
    env: Optional[Mapping[str, str]] = None,
    input: Optional[bytes] = None,
) -> str:
    """Run a command, failing fast on any error.

    Args:
        *args: Command and arguments
        timeout: Seconds before the command is killed
        capture: Capture stdout/stderr instead of inheriting them
        env: Extra environment variables merged over ``os.environ``
        input: Bytes written to the command's stdin

    Returns:
        Captured stdout decoded as text ("" when not capturing)

    Raises:
        ExternalToolFailure: Non-zero exit, timeout, or missing executable
    """
    command = [str(arg) for arg in args]
    logger.debug("running %s", " ".join(command))

    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    try:
        process = subprocess.run(
            command,
            check=False,
            capture_output=capture,
            timeout=timeout,
            env=full_env,
            input=input,
        )
    except subprocess.TimeoutExpired as e:
        raise ExternalToolFailure(command, timed_out=True) from e
    except OSError as e:
        raise ExternalToolFailure(command, stderr=str(e)) from e

    stderr = process.stderr.decode(errors="replace") if capture and process.stderr else ""
    if process.returncode != 0:
        raise ExternalToolFailure(command, process.returncode, stderr)

    if capture and process.stdout:
        return process.stdout.decode(errors="replace")
    return ""


def check(*args: Arg, timeout: Optional[float] = None) -> bool:
    """Run a command and report whether it succeeded.

    Timeouts and missing executables still raise, only a clean non-zero
    exit is turned into ``False``.
    """
    try:
        run(*args, timeout=timeout)
    except ExternalToolFailure as e:
        if e.timed_out or e.returncode is None:
            raise
        return False
    return True


def passthrough(*args: Arg, timeout: Optional[float] = None) -> int:
    """Run a command with inherited stdio and return its exit code."""
    command = [str(arg) for arg in args]
    try:
        process = subprocess.run(command, check=False, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise ExternalToolFailure(command, timed_out=True) from e
    except OSError as e:
        raise ExternalToolFailure(command, stderr=str(e)) from e
    return process.returncode
