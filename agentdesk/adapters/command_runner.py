"""Runs action-directive commands as a subprocess.

The runner never interprets output; the dispatcher turns the captured
stdout, stderr and exit code into a tool message.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from agentdesk.engine.errors import CommandExecutionError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None


class CommandRunner:
    """Executes ``<program> <args...>`` without a shell."""

    def __init__(self, program: str = "oc", cwd: str | None = None) -> None:
        self.program = program
        self.cwd = cwd

    async def run(self, args: list[str]) -> CommandResult:
        logger.info("Running %s %s", self.program, " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                self.program, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
            )
        except FileNotFoundError as exc:
            raise CommandExecutionError(
                args, f"'{self.program}' not found"
            ) from exc
        except OSError as exc:
            raise CommandExecutionError(args, str(exc)) from exc

        stdout, stderr = await proc.communicate()
        result = CommandResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            exit_code=proc.returncode,
        )
        logger.debug("%s exited with %s", self.program, result.exit_code)
        return result
