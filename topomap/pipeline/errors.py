"""TopoMap – pipeline error taxonomy.

Every error the orchestrator can surface derives from
:class:`PipelineError`. Errors raised while a stage is running carry the
stage name so that the run summary can say which step failed and why.
All of them are fatal: the orchestrator stops at the first one.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.stage = stage


class ConfigurationError(PipelineError):
    """Invalid or missing setting, detected before any stage runs."""


class StageNotFoundError(ConfigurationError):
    """A stage name given by the operator is not part of the stage table."""

    def __init__(self, name: str, known: tuple[str, ...]) -> None:
        super().__init__(f"Unknown stage {name!r}; known stages: {', '.join(known)}")
        self.name = name
        self.known = known


class ArtifactMissingError(PipelineError):
    """An input a stage depends on is absent from disk."""

    def __init__(self, stage: str, path: Path) -> None:
        super().__init__(f"Stage {stage!r} requires {path}, which does not exist", stage=stage)
        self.path = path


class ExternalToolInvocationError(PipelineError):
    """The external tool could not be started at all."""

    def __init__(self, command: str, reason: str, stage: Optional[str] = None) -> None:
        super().__init__(f"Could not run {command!r}: {reason}", stage=stage)
        self.command = command
        self.reason = reason


class ExternalToolExitError(PipelineError):
    """The external tool ran and returned a non-zero exit status."""

    def __init__(self, stage: str, command: str, exit_code: int) -> None:
        super().__init__(
            f"Stage {stage!r}: {command!r} exited with status {exit_code}", stage=stage
        )
        self.command = command
        self.exit_code = exit_code


class PostconditionError(PipelineError):
    """The tool exited 0 but the expected artifact was not produced."""

    def __init__(self, stage: str, path: Path, detail: str = "") -> None:
        message = f"Stage {stage!r} did not produce {path}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, stage=stage)
        self.path = path


class ArtifactIOError(PipelineError):
    """A filesystem operation on a stage's files failed."""

    def __init__(self, stage: str, error: OSError) -> None:
        super().__init__(f"Stage {stage!r}: filesystem error: {error}", stage=stage)
        self.error = error
