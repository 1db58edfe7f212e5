"""
Local CLI probes (``gh auth status``, ``codex --version``) used by the
integrations status report.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def binary_present(self) -> bool:
        """False only when the failure looks like a missing executable."""
        return self.ok or ("not found" not in self.stderr and "ENOENT" not in self.stderr)


CommandRunner = Callable[[str, Sequence[str]], Awaitable[CommandResult]]


def sanitize_detail(raw: str) -> str:
    """Drop every line mentioning a token so probe output cannot leak secrets."""
    return "\n".join(line for line in raw.split("\n") if "token" not in line.lower()).strip()


async def run_command(command: str, args: Sequence[str], timeout: float = 10.0) -> CommandResult:
    """Run a probe command with stdin closed and a hard timeout."""
    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return CommandResult(127, "", f"{command}: command not found (ENOENT)")
    except OSError as exc:
        return CommandResult(1, "", f"{command}: {exc.strerror or exc}")

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        logger.warning("Probe %s %s timed out after %.1fs", command, " ".join(args), timeout)
        return CommandResult(124, "", f"{command}: timed out")

    return CommandResult(
        exit_code=proc.returncode if proc.returncode is not None else 1,
        stdout=stdout.decode("utf-8", errors="replace").strip(),
        stderr=stderr.decode("utf-8", errors="replace").strip(),
    )


def make_command_runner(timeout: float) -> CommandRunner:
    async def runner(command: str, args: Sequence[str]) -> CommandResult:
        return await run_command(command, args, timeout=timeout)

    return runner
