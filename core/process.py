"""
Process launcher for external provisioning tools.

Every call that waits for the child is bounded by a timeout. Steps describe
*what* to run (command + args); this module is the only place that knows how
processes are started.

Usage:
    from core.process import ProcessLauncher

    launcher = ProcessLauncher(timeout=600)
    result = launcher.run("imp", ["file=params.dmp", "full=y"], input_text="owner/pw@SMG\\n")
    result.check()  # raises ExternalToolError on non-zero exit
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from core.errors import ExternalToolError, redact

logger = logging.getLogger(__name__)

MAX_OUTPUT_IN_ERROR = 2000


@dataclass
class ProcessResult:
    """Result of a process invocation."""
    command: str
    args: List[str]
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    elapsed_time: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def command_line(self) -> str:
        return " ".join([self.command, *self.args])

    def check(self) -> "ProcessResult":
        """Raise ExternalToolError unless the process exited with 0.

        A detached process (exit_code None) passes.
        """
        if self.exit_code not in (0, None):
            output = (self.stderr or self.stdout).strip()
            raise ExternalToolError(
                f"{self.command} exited with code {self.exit_code}",
                command=redact(self.command_line),
                exit_code=self.exit_code,
                output=redact(output[-MAX_OUTPUT_IN_ERROR:]),
            )
        return self

    def to_dict(self) -> Dict[str, object]:
        return {
            "command": redact(self.command_line),
            "exit_code": self.exit_code,
            "elapsed_time": round(self.elapsed_time, 2),
        }


class ProcessLauncher:
    """
    Runs external programs with timeouts.

    Args:
        timeout: Default timeout in seconds for waited invocations
        elevation_prefix: Command prefix used when ``elevated=True``
            (for example ``["sudo", "-n"]``); empty means the current
            process is already elevated
    """

    def __init__(
        self,
        timeout: int = 3600,
        elevation_prefix: Optional[Sequence[str]] = None,
    ):
        self.timeout = timeout
        self.elevation_prefix = list(elevation_prefix or [])

    @classmethod
    def from_settings(cls, settings) -> "ProcessLauncher":
        return cls(
            timeout=settings.timeouts.process,
            elevation_prefix=settings.tools.elevation_prefix,
        )

    def run(
        self,
        command: str,
        args: Optional[Sequence[str]] = None,
        elevated: bool = False,
        wait: bool = True,
        timeout: Optional[int] = None,
        input_text: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> ProcessResult:
        """
        Execute a program.

        Args:
            command: Executable name or path
            args: Arguments
            elevated: Run with the configured elevation prefix
            wait: Wait for exit; False starts the process detached
            timeout: Seconds before the process is killed (default: self.timeout)
            input_text: Text written to stdin (credentials go here, not in args)
            env: Extra environment variables
            cwd: Working directory

        Returns:
            ProcessResult (exit_code None when not waiting)

        Raises:
            ExternalToolError: On timeout or when the executable cannot be started
        """
        args = [str(a) for a in (args or [])]
        cmd = [command, *args]
        if elevated and self.elevation_prefix:
            cmd = [*self.elevation_prefix, *cmd]

        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)

        effective_timeout = timeout or self.timeout
        printable = redact(" ".join(cmd))
        logger.debug(f"Running: {printable} (timeout={effective_timeout}s, wait={wait})")

        if not wait:
            try:
                subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    cwd=str(cwd) if cwd else None,
                    env=full_env,
                )
            except OSError as e:
                raise ExternalToolError(
                    f"Cannot start {command}: {e}", command=printable
                ) from e
            return ProcessResult(command=command, args=args, exit_code=None)

        start_time = time.time()
        try:
            completed = subprocess.run(
                cmd,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=effective_timeout,
                cwd=str(cwd) if cwd else None,
                env=full_env,
            )
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(
                f"{command} timed out after {effective_timeout} seconds",
                command=printable,
            ) from e
        except OSError as e:
            raise ExternalToolError(
                f"Cannot start {command}: {e}", command=printable
            ) from e

        elapsed = time.time() - start_time
        result = ProcessResult(
            command=command,
            args=args,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            elapsed_time=elapsed,
        )
        logger.debug(f"{command} exited with {result.exit_code} after {elapsed:.1f}s")
        return result
