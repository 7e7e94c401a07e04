"""External tool invocation.

Install, build and post-build checks are opaque commands: prbuild runs them
once each, with a fixed timeout, and only looks at the exit code.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from prbuild.errors import ToolInvocationError

logger = logging.getLogger(__name__)

OUTPUT_TAIL_LINES = 20


@dataclass
class CommandResult:
    """Exit status and captured output of one subprocess."""

    command: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def tail(self, lines: int = OUTPUT_TAIL_LINES) -> str:
        return "\n".join(self.output.splitlines()[-lines:])


async def run_command(
    cmd: list[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
    timeout: float = 60,
) -> CommandResult:
    """Run ``cmd`` to completion and capture its output.

    Raises:
        FileNotFoundError: The executable does not exist.
        asyncio.TimeoutError: ``timeout`` elapsed; the process is killed first.
    """
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=str(cwd),
        env=dict(env) if env is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    return CommandResult(
        command=list(cmd),
        returncode=proc.returncode or 0,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )


async def run_tool(
    step: str,
    cmd: list[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
    timeout: float,
) -> CommandResult:
    """Run a tool command, raising ToolInvocationError unless it exits 0."""
    display = shlex.join(cmd)
    logger.info("[%s] $ %s", step, display)
    try:
        result = await run_command(cmd, cwd=cwd, env=env, timeout=timeout)
    except FileNotFoundError as e:
        raise ToolInvocationError(
            f"{step}: executable not found: {cmd[0]}", command=cmd, step=step
        ) from e
    except asyncio.TimeoutError as e:
        raise ToolInvocationError(
            f"{step}: '{display}' timed out after {timeout:.0f}s", command=cmd, step=step
        ) from e
    except OSError as e:
        raise ToolInvocationError(
            f"{step}: could not start '{display}': {e.strerror or e}", command=cmd, step=step
        ) from e

    logger.debug("[%s] output:\n%s", step, result.tail())
    if result.returncode != 0:
        raise ToolInvocationError(
            f"{step}: '{display}' exited with status {result.returncode}",
            command=cmd,
            returncode=result.returncode,
            output=result.tail(),
            step=step,
        )
    return result


async def check_tool_versions(
    commands: list[list[str]],
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
    timeout: float = 60,
) -> dict[str, str]:
    """Run each version command and return ``{executable: version}``."""
    versions: dict[str, str] = {}
    for cmd in commands:
        result = await run_tool("versions", cmd, cwd=cwd, env=env, timeout=timeout)
        version = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
        versions[cmd[0]] = version
        logger.info("%s %s", cmd[0], version or "(no version output)")
    return versions
