"""
External command execution.

All zfs, borg and mount invocations go through run_command so failures
surface uniformly as ExternalToolError naming the step that failed.
"""

import logging
import os
import subprocess
from typing import Dict, List, Optional, Sequence


logger = logging.getLogger(__name__)


class ExternalToolError(Exception):
    """Raised when an external tool (zfs, borg, mount, ssh) fails."""

    def __init__(self, step: str, command: Optional[Sequence[str]] = None,
                 returncode: Optional[int] = None, stderr: str = ''):
        self.step = step
        self.command = list(command) if command else []
        self.returncode = returncode
        self.stderr = (stderr or '').strip()

        message = f"{step} failed"
        if returncode is not None:
            message += f" (exit {returncode})"
        if self.stderr:
            message += f": {self.stderr.splitlines()[-1]}"
        super().__init__(message)


def run_command(
    args: Sequence[str],
    step: str,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[str] = None,
) -> str:
    """
    Run a command to completion and return its stdout.

    Args:
        args: Command and arguments (never passed through a shell)
        step: Human readable description used in logs and errors
        env: Extra environment variables for the child only
        cwd: Working directory for the child

    Returns:
        Decoded stdout

    Raises:
        ExternalToolError: If the binary is missing or exits non-zero
    """
    cmd_str = ' '.join(args)
    logger.debug(f"exec [{step}]: {cmd_str}")

    child_env = None
    if env:
        child_env = dict(os.environ)
        child_env.update(env)

    try:
        result = subprocess.run(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=child_env,
            cwd=cwd,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise ExternalToolError(step, args, stderr=f"command not found: {e.filename or args[0]}")
    except PermissionError as e:
        raise ExternalToolError(step, args, stderr=f"permission denied: {e}")

    if result.stdout:
        logger.debug(f"stdout [{step}]: {result.stdout.rstrip()}")
    if result.stderr:
        # borg writes --stats to stderr
        logger.debug(f"stderr [{step}]: {result.stderr.rstrip()}")

    if result.returncode != 0:
        raise ExternalToolError(step, args, returncode=result.returncode, stderr=result.stderr)

    return result.stdout


def split_lines(output: str) -> List[str]:
    """Non-empty, stripped lines of command output."""
    return [line.strip() for line in output.splitlines() if line.strip()]
