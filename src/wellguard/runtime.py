"""Runtime helpers for invoking external tools."""

import asyncio
import logging
import os
import shlex
import shutil
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from wellguard.utils.debug import debug_command, redact_command

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured subprocess result."""

    command: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[..., Awaitable[CommandResult]]


class MissingToolError(RuntimeError):
    """A required external binary is not installed."""

    def __init__(self, tool: str, install_hint: str = ""):
        self.tool = tool
        self.install_hint = install_hint
        message = f"{tool} binary not found"
        if install_hint:
            message += f" (install: {install_hint})"
        super().__init__(message)


def resolve_binary(name: str) -> str | None:
    """Return absolute path for a binary name when available."""
    found = shutil.which(name)
    if found:
        return found
    home = Path.home()
    for d in [home / ".local" / "bin", Path("/usr/local/bin"), Path("/opt/homebrew/bin")]:
        candidate = d / name
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


async def run_command(
    command: list[str],
    timeout: float | None = None,
    allowed_exit_codes: Iterable[int] = (0,),
    verbose: bool = False,
    env: dict[str, str] | None = None,
    cwd: Path | str | None = None,
    stdin_data: str | None = None,
) -> CommandResult:
    """Run a subprocess command and capture decoded output.

    ``env`` entries are layered over the current process environment so a
    secret such as ``PGPASSWORD`` reaches only the child.
    """
    started = time.perf_counter()
    cmd_preview = " ".join(shlex.quote(part) for part in redact_command(command))
    if verbose:
        logger.info("running: %s", cmd_preview)
    else:
        logger.debug("running: %s", cmd_preview)
    debug_command(command, cwd=str(cwd) if cwd else None)

    child_env = None
    if env:
        child_env = {**os.environ, **env}

    process = await asyncio.create_subprocess_exec(
        *command,
        stdin=asyncio.subprocess.PIPE if stdin_data is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=child_env,
        cwd=str(cwd) if cwd else None,
    )
    payload = stdin_data.encode() if stdin_data is not None else None
    try:
        if timeout is None:
            stdout, stderr = await process.communicate(payload)
        else:
            stdout, stderr = await asyncio.wait_for(process.communicate(payload), timeout=timeout)
    except TimeoutError:
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=3.0)
        except TimeoutError:
            process.kill()
            await process.wait()
        raise RuntimeError(f"Command timed out: {cmd_preview}") from None

    result = CommandResult(
        command=list(command),
        returncode=process.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
    elapsed = time.perf_counter() - started
    debug_command(command, start=False, elapsed=elapsed, returncode=result.returncode)

    allowed = set(allowed_exit_codes)
    if result.returncode not in allowed:
        snippet = (result.stderr or result.stdout).strip().splitlines()
        detail = snippet[0] if snippet else "unknown error"
        raise RuntimeError(f"Command failed with exit code {result.returncode}: {detail}")
    logger.debug("done (%.2fs): exit=%s", elapsed, result.returncode)
    return result


async def start_background(command: list[str], cwd: Path | str | None = None):
    """Spawn a long-running child (for example a dev server) and return it."""
    logger.info("starting: %s", " ".join(command))
    return await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
        cwd=str(cwd) if cwd else None,
    )


async def stop_background(process) -> None:
    """Terminate a child started with ``start_background``."""
    if process is None or process.returncode is not None:
        return
    process.terminate()
    try:
        await asyncio.wait_for(process.wait(), timeout=5.0)
    except TimeoutError:
        process.kill()
        await process.wait()
