"""TopoMap – pipeline orchestrator.

This module runs the stage table from :mod:`topomap.pipeline.stages`
strictly in order:

- a stage whose target artifact already exists (and is non-empty) is
  skipped without invoking anything;
- otherwise its inputs are checked, its action runs in a fresh staging
  directory and its target must exist afterwards;
- the first failure stops the run. Artifacts published by earlier stages
  stay on disk, so the next run resumes from the first incomplete stage.

After the last stage the primary image is copied to a human-readable
alias and the output directory is listed into the :class:`RunResult`.

The orchestrator contains no knowledge of individual tools; everything
tool-specific lives in the stage table.
"""

from __future__ import annotations

import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from topomap.core.config import PipelineConfig
from topomap.core.logging import get_logger
from topomap.pipeline.artifacts import (
    OutputFile,
    copy_file,
    fresh_staging_dir,
    human_size,
    list_outputs,
)
from topomap.pipeline.compiler_options import write_contour_style, write_options_file
from topomap.pipeline.errors import (
    ArtifactIOError,
    ExternalToolExitError,
    PipelineError,
    PostconditionError,
)
from topomap.pipeline.runner import CommandRunner, SubprocessRunner
from topomap.pipeline.stages import (
    GMAPSUPP,
    Stage,
    StageContext,
    StageEntry,
    StageKind,
    build_stage_table,
    find_stage,
)


logger = get_logger(__name__)


# ============================================================================
# Results
# ============================================================================


class StageStatus(str, Enum):
    """Outcome of a single stage within a run."""

    SKIPPED = "SKIPPED"                    # Target artifact already present
    SKIPPED_DISABLED = "SKIPPED_DISABLED"  # Switched off by configuration
    SUCCESS = "SUCCESS"                    # Executed and produced its artifact
    FAILED = "FAILED"                      # Executed and failed; run halted


class RunStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass(frozen=True)
class StageOutcome:
    """Record of what happened to one stage."""

    name: str
    label: str
    position: int
    status: StageStatus
    invocations: int = 0
    exit_code: Optional[int] = None
    error: Optional[str] = None
    elapsed_seconds: float = 0.0


@dataclass
class RunResult:
    """Outcome of one pipeline execution.

    Attributes:
        outcomes: Per-stage outcomes in execution order.
        status: Overall status; ``FAILED`` if any stage failed.
        failed_stage: Name of the failing stage, if any.
        error: The error that halted the run, if any.
        primary_image: Path of ``gmapsupp.img`` after success.
        alias_image: Path of the ``<MAP_NAME>.img`` copy after success.
        output_files: Listing of the output directory after success.
    """

    outcomes: List[StageOutcome] = field(default_factory=list)
    status: RunStatus = RunStatus.SUCCESS
    failed_stage: Optional[str] = None
    error: Optional[PipelineError] = None
    primary_image: Optional[Path] = None
    alias_image: Optional[Path] = None
    output_files: List[OutputFile] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        """Process exit status: 0, the failing tool's status, or 1."""

        if self.succeeded:
            return 0
        if isinstance(self.error, ExternalToolExitError) and self.error.exit_code > 0:
            return self.error.exit_code
        return 1

    def outcome(self, name: str) -> Optional[StageOutcome]:
        for item in self.outcomes:
            if item.name == name:
                return item
        return None


# ============================================================================
# Core loop
# ============================================================================


def prepare_workspace(config: PipelineConfig) -> None:
    """Create the directory layout and regenerate compiler configuration."""

    paths = config.paths
    for directory in paths.working_dirs():
        directory.mkdir(parents=True, exist_ok=True)
    write_options_file(config)
    write_contour_style(paths.style_dir)


def _apply_force(table: List[StageEntry], force: Iterable[str]) -> None:
    """Delete target artifacts of forced stages.

    All names are resolved before anything is deleted so that a typo
    leaves the data directory untouched.
    """

    entries = [find_stage(table, name) for name in force]
    for entry in entries:
        if entry.kind is StageKind.DISABLED:
            logger.info("Stage %s is disabled; nothing to force", entry.name)
            continue
        if entry.target.exists():
            logger.info("Forcing stage %s: removing %s", entry.name, entry.target)
            entry.target.unlink()


def _run_stage(
    stage: Stage,
    config: PipelineConfig,
    runner: CommandRunner,
    total: int,
) -> tuple[StageOutcome, Optional[PipelineError]]:
    prefix = f"[{stage.position}/{total}]"

    if stage.is_complete():
        logger.info("%s %s: %s already exists, skipping", prefix, stage.label, stage.target)
        skipped = StageOutcome(stage.name, stage.label, stage.position, StageStatus.SKIPPED)
        return skipped, None

    logger.info("%s %s...", prefix, stage.label)
    started = time.monotonic()
    ctx = StageContext(config=config, runner=runner, staging_dir=stage.staging_dir)

    error: Optional[PipelineError] = None
    try:
        fresh_staging_dir(ctx.staging_dir)
        stage.check_inputs()
        stage.action(stage, ctx)
        if not stage.is_complete():
            raise PostconditionError(stage.name, stage.target)
    except PipelineError as exc:
        exc.stage = exc.stage or stage.name
        error = exc
    except OSError as exc:
        error = ArtifactIOError(stage.name, exc)

    if error is not None:
        elapsed = time.monotonic() - started
        logger.error("%s %s failed after %.1fs: %s", prefix, stage.label, elapsed, error)
        failed = StageOutcome(
            stage.name,
            stage.label,
            stage.position,
            StageStatus.FAILED,
            invocations=ctx.invocations,
            exit_code=ctx.last_exit_code,
            error=str(error),
            elapsed_seconds=elapsed,
        )
        return failed, error

    shutil.rmtree(ctx.staging_dir, ignore_errors=True)
    elapsed = time.monotonic() - started
    logger.info(
        "%s %s complete: %s (%s, %.1fs)",
        prefix,
        stage.label,
        stage.target.name,
        human_size(stage.target.stat().st_size),
        elapsed,
    )
    succeeded = StageOutcome(
        stage.name,
        stage.label,
        stage.position,
        StageStatus.SUCCESS,
        invocations=ctx.invocations,
        exit_code=ctx.last_exit_code,
        elapsed_seconds=elapsed,
    )
    return succeeded, None


def run(
    config: PipelineConfig,
    runner: Optional[CommandRunner] = None,
    force: Iterable[str] = (),
) -> RunResult:
    """Run the full map build for ``config``.

    Args:
        config: Resolved, immutable pipeline configuration.
        runner: Command runner; defaults to :class:`SubprocessRunner`.
        force: Stage names whose artifacts are removed first so that they
            run again.

    Returns:
        The :class:`RunResult`. Stage failures are reported through the
        result rather than raised.

    Raises:
        ConfigurationError: If the stage table is invalid or ``force``
            names an unknown stage. Nothing has executed at that point.
    """

    if runner is None:
        runner = SubprocessRunner()

    table = build_stage_table(config)
    _apply_force(table, force)
    prepare_workspace(config)

    result = RunResult()
    total = len(table)

    for entry in table:
        if entry.kind is StageKind.DISABLED:
            logger.info(
                "[%d/%d] %s: disabled (%s)", entry.position, total, entry.label, entry.reason
            )
            result.outcomes.append(
                StageOutcome(
                    entry.name, entry.label, entry.position, StageStatus.SKIPPED_DISABLED
                )
            )
            continue

        outcome, error = _run_stage(entry, config, runner, total)
        result.outcomes.append(outcome)
        if outcome.status == StageStatus.FAILED:
            result.status = RunStatus.FAILED
            result.failed_stage = entry.name
            result.error = error
            return result

    try:
        return _finalise(config, result)
    except OSError as exc:
        # The alias copy belongs to the last stage.
        result.status = RunStatus.FAILED
        result.failed_stage = "compile"
        result.error = ArtifactIOError("compile", exc)
        logger.error("Could not finish the build: %s", result.error)
        return result


def _finalise(config: PipelineConfig, result: RunResult) -> RunResult:
    """Copy the primary image to its alias and list the output directory."""

    output_dir = config.paths.output_dir
    primary = output_dir / GMAPSUPP
    alias = output_dir / f"{config.map_name}.img"

    if alias != primary:
        copy_file(primary, alias)
        logger.info("Created named map file %s", alias.name)

    result.primary_image = primary
    result.alias_image = alias
    result.output_files = list_outputs(output_dir)

    logger.info(
        "SUCCESS! Map file: %s (%s)", primary, human_size(primary.stat().st_size)
    )
    logger.info("Build complete! Files available in: %s", output_dir)
    for item in result.output_files:
        if item.name.endswith(".img"):
            logger.info("  %-24s %s", item.name, human_size(item.size_bytes))
    return result
