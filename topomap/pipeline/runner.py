"""TopoMap – external command runner.

Stages never spawn processes directly. They describe what to run as a
:class:`ToolCommand` and hand it to a :class:`CommandRunner`, which
returns the exit status. Production code uses :class:`SubprocessRunner`;
tests substitute fakes that write placeholder artifacts.
"""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from topomap.core.logging import get_logger
from topomap.pipeline.errors import ExternalToolInvocationError


logger = get_logger(__name__)


@dataclass(frozen=True)
class ToolCommand:
    """One external tool invocation.

    Attributes:
        command: Executable name or path.
        args: Arguments passed after the executable.
        cwd: Optional working directory for the child process.
    """

    command: str
    args: tuple[str, ...] = field(default_factory=tuple)
    cwd: Optional[Path] = None

    @classmethod
    def from_argv(
        cls, argv: list[str], *args: str, cwd: Optional[Path] = None
    ) -> "ToolCommand":
        """Build a command from a configured argv prefix plus extra args."""

        return cls(command=argv[0], args=tuple(argv[1:]) + tuple(args), cwd=cwd)

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def display(self) -> str:
        return shlex.join(self.argv)


class CommandRunner(Protocol):
    """Capability to run an external tool and report its exit status."""

    def run(self, command: ToolCommand) -> int:
        """Run ``command`` to completion and return its exit status.

        Raises:
            ExternalToolInvocationError: If the tool cannot be started.
        """


class SubprocessRunner:
    """Run tools as child processes, blocking until they exit.

    Output is inherited from the parent so that long-running tools show
    their own progress. No timeout is applied.
    """

    def run(self, command: ToolCommand) -> int:
        logger.info("exec: %s (cwd=%s)", command.display(), command.cwd or ".")
        try:
            completed = subprocess.run(command.argv, cwd=command.cwd, check=False)
        except FileNotFoundError as exc:
            raise ExternalToolInvocationError(command.command, "command not found") from exc
        except PermissionError as exc:
            raise ExternalToolInvocationError(command.command, "not executable") from exc
        except OSError as exc:
            raise ExternalToolInvocationError(command.command, str(exc)) from exc

        logger.info("exit: %s -> %d", command.command, completed.returncode)
        return completed.returncode
