"""
Command executor and test directive registry.

Jobs are shell commands. Two reserved directives short-circuit the shell so
the retry and dead-letter paths can be exercised deterministically:

- "sleep N": wait N whole seconds, then succeed
- "fail": fail immediately

Commands may run more than once (lease expiry, forced release on shutdown),
so they should be idempotent.
"""

import asyncio
import contextlib
import logging
import os
import re
import time
from collections.abc import Awaitable, Callable

from cmdqueue.types.job import CommandResult

logger = logging.getLogger(__name__)

# A directive receives the regex match for its pattern and the timeout
Directive = Callable[[re.Match[str], float], Awaitable[CommandResult]]

# Directive registry: name -> (pattern, handler)
_directives: dict[str, tuple[re.Pattern[str], Directive]] = {}

FAIL_DIRECTIVE_ERROR = "Simulated job failure for testing retries/DLQ"


def register_directive(name: str, pattern: str) -> Callable[[Directive], Directive]:
    """
    Decorator to register a reserved command directive.

    Args:
        name: Directive name.
        pattern: Regex the whole (trimmed) command must match, case-insensitive.

    Returns:
        Decorator function.

    Example:
        @register_directive("noop", r"noop")
        async def handle_noop(match, timeout):
            ...
    """
    compiled = re.compile(rf"^{pattern}$", re.IGNORECASE)

    def decorator(handler: Directive) -> Directive:
        _directives[name] = (compiled, handler)
        logger.debug(f"Registered command directive: {name}")
        return handler

    return decorator


def match_directive(command: str) -> tuple[Directive, re.Match[str]] | None:
    """
    Find the directive a command invokes, if any.

    Returns:
        (handler, match) or None for ordinary shell commands.
    """
    command = command.strip()
    for pattern, handler in _directives.values():
        match = pattern.match(command)
        if match is not None:
            return handler, match
    return None


def list_directives() -> list[str]:
    """List all registered directive names."""
    return list(_directives.keys())


def normalize_command(command: str, os_name: str | None = None) -> str:
    """
    Prepare a command line for the host shell.

    On Windows, commands not already run through cmd or powershell are
    wrapped in cmd /c with inner double quotes escaped.

    Args:
        command: Raw command.
        os_name: Override for os.name, for tests.
    """
    trimmed = command.strip()
    if match_directive(trimmed) is not None:
        return trimmed

    if (os_name or os.name) == "nt" and not re.match(r"^(cmd|powershell)\b", trimmed, re.IGNORECASE):
        escaped = trimmed.replace('"', '\\"')
        return f'cmd /c "{escaped}"'

    return trimmed


# ============================================================================
# Built-in directives
# ============================================================================


@register_directive("sleep", r"sleep\s+(\d+)")
async def handle_sleep(match: re.Match[str], timeout: float) -> CommandResult:
    """
    Sleep for N seconds without spawning a process.
    Bounded by the command timeout like any other command.
    """
    seconds = int(match.group(1))
    logger.info(f"Simulating sleep for {seconds} second(s)")

    if seconds > timeout:
        await asyncio.sleep(timeout)
        return CommandResult(
            success=False,
            error=f"Command timed out after {timeout:g}s",
        )

    await asyncio.sleep(seconds)
    return CommandResult(
        success=True,
        output=f"Slept for {seconds} second(s)",
    )


@register_directive("fail", r"fail")
async def handle_fail(match: re.Match[str], timeout: float) -> CommandResult:
    """Always fails - for testing retry and dead-letter behavior."""
    return CommandResult(
        success=False,
        error=FAIL_DIRECTIVE_ERROR,
    )


class CommandExecutor:
    """
    Runs job commands with a timeout.

    Never raises for command problems: non-zero exits, timeouts and spawn
    errors come back as a failed CommandResult carrying the error text.
    """

    async def run(self, command: str, timeout: float) -> CommandResult:
        """
        Execute a command.

        Args:
            command: Shell command or reserved directive.
            timeout: Seconds before the command is killed.

        Returns:
            CommandResult with stripped stdout on success or the error text.
        """
        start = time.monotonic()

        found = match_directive(command)
        try:
            if found is not None:
                handler, match = found
                result = await handler(match, timeout)
            else:
                result = await self._run_shell(normalize_command(command), timeout)
        except Exception as e:
            logger.exception(f"Executor raised exception: {e}")
            result = CommandResult(success=False, error=f"Executor exception: {e}")

        result.duration_ms = (time.monotonic() - start) * 1000
        return result

    async def _run_shell(self, command: str, timeout: float) -> CommandResult:
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Failed to start command: {e}")
            return CommandResult(success=False, error=f"Failed to start command: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError:
            await _kill(process)
            return CommandResult(
                success=False,
                error=f"Command timed out after {timeout:g}s",
            )
        except asyncio.CancelledError:
            await _kill(process)
            raise

        out = stdout.decode(errors="replace").strip()
        err = stderr.decode(errors="replace").strip()

        if process.returncode != 0:
            return CommandResult(
                success=False,
                output=out,
                error=err or f"Command exited with code {process.returncode}",
            )

        return CommandResult(success=True, output=out)


async def _kill(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await process.wait()
