"""TopoMap – declarative stage table.

This module defines the fixed, ordered list of build stages:

1. ``download`` – fetch the OSM extract
2. ``contours`` – generate elevation contours (can be disabled)
3. ``merge``    – merge OSM data with contours, or copy it forward
4. ``split``    – split the merged file into numbered tiles
5. ``compile``  – compile the tiles into ``gmapsupp.img``

Each enabled stage is a :class:`Stage` with a target artifact, a command
template and an action. A stage disabled by configuration is a
:class:`DisabledStage`. The table is independent of the execution layer;
:mod:`topomap.orchestration.orchestrator` decides when a stage runs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.parse import urlparse

from topomap.core.config import PipelineConfig
from topomap.core.logging import get_logger
from topomap.pipeline.artifacts import (
    artifact_ready,
    copy_file,
    newest_match,
    publish,
    publish_all,
)
from topomap.pipeline.compiler_options import CONTOUR_STYLE
from topomap.pipeline.errors import (
    ArtifactMissingError,
    ConfigurationError,
    ExternalToolExitError,
    ExternalToolInvocationError,
    PostconditionError,
    StageNotFoundError,
)
from topomap.pipeline.runner import CommandRunner, ToolCommand

logger = get_logger(__name__)

GMAPSUPP = "gmapsupp.img"

TILE_RE = re.compile(r"^\d{8}\.osm\.pbf$")
TILE_IMAGE_RE = re.compile(r"^\d{8}\.img$")


# ============================================================================
# Stage model
# ============================================================================


class StageKind(str, Enum):
    """Tag distinguishing runnable stages from disabled ones."""

    ENABLED = "ENABLED"
    DISABLED = "DISABLED"


@dataclass
class StageContext:
    """Per-execution state handed to a stage action.

    Attributes:
        config: Resolved pipeline configuration.
        runner: Command runner used for every external invocation.
        staging_dir: Empty scratch directory owned by this stage.
        invocations: Number of external commands started so far.
        last_exit_code: Exit status of the most recent invocation.
    """

    config: PipelineConfig
    runner: CommandRunner
    staging_dir: Path
    invocations: int = 0
    last_exit_code: Optional[int] = None

    def invoke(self, stage: "Stage", command: ToolCommand) -> None:
        """Run ``command`` for ``stage``; raise on any failure."""

        self.invocations += 1
        try:
            exit_code = self.runner.run(command)
        except ExternalToolInvocationError as exc:
            exc.stage = stage.name
            raise
        self.last_exit_code = exit_code
        if exit_code != 0:
            raise ExternalToolExitError(stage.name, command.command, exit_code)


CommandTemplate = Callable[[StageContext], ToolCommand]
StageAction = Callable[["Stage", StageContext], None]


@dataclass(frozen=True)
class Stage:
    """An enabled pipeline step.

    Attributes:
        name: Stable identifier (used by ``--force``).
        label: Human-readable description for logs.
        position: 1-based ordinal in the table.
        target: Artifact whose presence means the stage is complete.
        command: Template producing the primary tool invocation.
        action: Runs the command(s) and publishes the outputs.
        inputs: Artifacts that must exist before the stage runs.
    """

    name: str
    label: str
    position: int
    target: Path
    command: CommandTemplate
    action: StageAction
    inputs: tuple[Path, ...] = field(default_factory=tuple)

    kind = StageKind.ENABLED

    @property
    def staging_dir(self) -> Path:
        """Scratch directory beside the target, on the same filesystem."""

        return self.target.parent / f".staging-{self.name}"

    def is_complete(self) -> bool:
        return artifact_ready(self.target)

    def check_inputs(self) -> None:
        for path in self.inputs:
            if not artifact_ready(path):
                raise ArtifactMissingError(self.name, path)


@dataclass(frozen=True)
class DisabledStage:
    """A step switched off by configuration; it never runs or produces output."""

    name: str
    label: str
    position: int
    reason: str

    kind = StageKind.DISABLED


StageEntry = Union[Stage, DisabledStage]


# ============================================================================
# Stage actions
# ============================================================================


def _run_and_publish(stage: Stage, ctx: StageContext) -> None:
    """Run the primary command and publish ``staging/<target name>``."""

    ctx.invoke(stage, stage.command(ctx))
    produced = ctx.staging_dir / stage.target.name
    if not artifact_ready(produced):
        raise PostconditionError(stage.name, stage.target, "tool wrote no output")
    publish(produced, stage.target)


def _generate_contours(stage: Stage, ctx: StageContext) -> None:
    ctx.invoke(stage, stage.command(ctx))
    pattern = f"{ctx.config.area_prefix}_*.osm.pbf"
    generated = newest_match(ctx.staging_dir, pattern)
    if generated is None or not artifact_ready(generated):
        raise PostconditionError(stage.name, stage.target, f"no file matching {pattern}")
    publish(generated, stage.target)


def _merge_or_copy(stage: Stage, ctx: StageContext) -> None:
    osm_file, contour_file = stage.inputs[0], contour_artifact(ctx.config)
    if ctx.config.contours_enabled and artifact_ready(contour_file):
        _run_and_publish(stage, ctx)
        return
    logger.info("No contour data, copying %s forward unmodified", osm_file.name)
    copy_file(osm_file, stage.target)


def _split(stage: Stage, ctx: StageContext) -> None:
    ctx.invoke(stage, stage.command(ctx))
    produced = sorted(p for p in ctx.staging_dir.iterdir() if p.is_file())
    if not any(TILE_RE.match(p.name) for p in produced):
        raise PostconditionError(stage.name, stage.target, "splitter wrote no tiles")

    tiles_dir = stage.target.parent
    for old in tiles_dir.iterdir():
        if old.is_file():
            old.unlink()
    publish_all(produced, tiles_dir, stage.target)


def _compile(stage: Stage, ctx: StageContext) -> None:
    ctx.invoke(stage, stage.command(ctx))
    combined = ctx.staging_dir / GMAPSUPP

    if not artifact_ready(combined):
        tile_images = sorted(
            p for p in ctx.staging_dir.iterdir() if TILE_IMAGE_RE.match(p.name)
        )
        if not tile_images:
            raise PostconditionError(stage.name, stage.target, "no combined or per-tile images")
        logger.warning(
            "Compiler produced %d tile image(s) but no %s; combining them",
            len(tile_images),
            GMAPSUPP,
        )
        ctx.invoke(stage, combine_command(ctx, tile_images))
        if not artifact_ready(combined):
            raise PostconditionError(stage.name, stage.target, "fallback combination failed")

    produced = sorted(p for p in ctx.staging_dir.iterdir() if p.is_file())
    publish_all(produced, stage.target.parent, stage.target)


# ============================================================================
# Command templates
# ============================================================================


def download_file_name(url: str) -> str:
    """Return the local file name for a download URL."""

    name = Path(urlparse(url).path).name
    if not name:
        raise ConfigurationError(f"Cannot derive a file name from OSM_URL {url!r}")
    return name


def contour_artifact(config: PipelineConfig) -> Path:
    return config.paths.dem_dir / f"{config.area_prefix}_contours.osm.pbf"


def tile_files(tiles_dir: Path) -> list[Path]:
    """Return the numbered tile files in ``tiles_dir`` in id order."""

    if not tiles_dir.is_dir():
        return []
    return sorted(p for p in tiles_dir.iterdir() if TILE_RE.match(p.name))


def combine_command(ctx: StageContext, tile_images: list[Path]) -> ToolCommand:
    """Secondary compiler invocation joining per-tile images.

    The options file and description are passed again so the combined
    image keeps the configured family and product ids.
    """

    config = ctx.config
    return ToolCommand.from_argv(
        config.tool_argv("compiler"),
        "-c",
        str(config.paths.options_file),
        f"--description={config.map_name}",
        f"--output-dir={ctx.staging_dir}",
        "--gmapsupp",
        *(str(p) for p in tile_images),
    )


def _download_command(url: str, file_name: str) -> CommandTemplate:
    def build(ctx: StageContext) -> ToolCommand:
        return ToolCommand.from_argv(
            ctx.config.tool_argv("downloader"),
            "-O",
            str(ctx.staging_dir / file_name),
            url,
        )

    return build


def _contour_command(ctx: StageContext) -> ToolCommand:
    config = ctx.config
    return ToolCommand.from_argv(
        config.tool_argv("contour"),
        "--max-nodes-per-tile=0",
        f"--source={config.contour_source}",
        f"--step={config.contour_step}",
        "--line-cat=400,100",
        "--simplify=5",
        "--start-node-id=20000000000",
        "--start-way-id=10000000000",
        "--write-timestamp",
        f"--output-prefix={ctx.staging_dir / config.area_prefix}",
        "--pbf",
        f"--area={config.bounding_box.as_area()}",
        cwd=ctx.staging_dir,
    )


def _merge_command(osm_file: Path, contour_file: Path, file_name: str) -> CommandTemplate:
    def build(ctx: StageContext) -> ToolCommand:
        return ToolCommand.from_argv(
            ctx.config.tool_argv("merger"),
            "merge",
            str(osm_file),
            str(contour_file),
            "-o",
            str(ctx.staging_dir / file_name),
        )

    return build


def _split_command(merged_file: Path) -> CommandTemplate:
    def build(ctx: StageContext) -> ToolCommand:
        return ToolCommand.from_argv(
            ctx.config.tool_argv("splitter"),
            f"--max-nodes={ctx.config.splitter_max_nodes}",
            f"--mapid={ctx.config.map_id}",
            "--output=pbf",
            str(merged_file),
            cwd=ctx.staging_dir,
        )

    return build


def _compile_command(ctx: StageContext) -> ToolCommand:
    config = ctx.config
    paths = config.paths
    tiles = tile_files(paths.tiles_dir)
    if not tiles:
        raise ArtifactMissingError("compile", paths.tiles_dir / f"{config.map_id}.osm.pbf")
    return ToolCommand.from_argv(
        config.tool_argv("compiler"),
        f"--style-file={paths.style_dir}",
        f"--style={CONTOUR_STYLE}",
        "-c",
        str(paths.options_file),
        f"--mapname={config.map_id}",
        f"--description={config.map_name}",
        f"--country-name={config.country_name}",
        f"--country-abbr={config.country_abbr}",
        f"--output-dir={ctx.staging_dir}",
        "--gmapsupp",
        *(str(p) for p in tiles),
    )


# ============================================================================
# Table builder
# ============================================================================


def build_stage_table(config: PipelineConfig) -> list[StageEntry]:
    """Build the ordered stage table for ``config``.

    Raises:
        ConfigurationError: If the resulting table is malformed.
    """

    paths = config.paths
    osm_name = download_file_name(config.osm_url)
    osm_file = paths.osm_dir / osm_name
    contour_file = contour_artifact(config)
    merged_name = f"{config.area_prefix}_merged.osm.pbf"
    merged_file = paths.work_dir / merged_name

    table: list[StageEntry] = [
        Stage(
            name="download",
            label="Downloading OpenStreetMap data",
            position=1,
            target=osm_file,
            command=_download_command(config.osm_url, osm_name),
            action=_run_and_publish,
        ),
    ]

    if config.contours_enabled:
        table.append(
            Stage(
                name="contours",
                label=f"Generating contour lines ({config.contour_step}m intervals)",
                position=2,
                target=contour_file,
                command=_contour_command,
                action=_generate_contours,
            )
        )
    else:
        table.append(
            DisabledStage(
                name="contours",
                label="Generating contour lines",
                position=2,
                reason="CONTOURS_ENABLED is false",
            )
        )

    table += [
        Stage(
            name="merge",
            label="Merging map and elevation data",
            position=3,
            target=merged_file,
            command=_merge_command(osm_file, contour_file, merged_name),
            action=_merge_or_copy,
            inputs=(osm_file,),
        ),
        Stage(
            name="split",
            label="Splitting data into tiles",
            position=4,
            target=paths.tiles_dir / f"{config.map_id}.osm.pbf",
            command=_split_command(merged_file),
            action=_split,
            inputs=(merged_file,),
        ),
        Stage(
            name="compile",
            label="Building Garmin map file",
            position=5,
            target=paths.output_dir / GMAPSUPP,
            command=_compile_command,
            action=_compile,
            inputs=(paths.tiles_dir / f"{config.map_id}.osm.pbf",),
        ),
    ]

    errors = validate_stage_table(table)
    if errors:
        raise ConfigurationError(f"Invalid stage table: {errors}")
    return table


def validate_stage_table(table: list[StageEntry]) -> list[str]:
    """Return a list of structural problems (empty if valid)."""

    errors = []
    names = [entry.name for entry in table]
    for name in sorted(set(names)):
        if names.count(name) > 1:
            errors.append(f"Duplicate stage name {name!r}")
    positions = [entry.position for entry in table]
    if positions != list(range(1, len(table) + 1)):
        errors.append(f"Stage positions must be 1..{len(table)} in order, got {positions}")
    return errors


def find_stage(table: list[StageEntry], name: str) -> StageEntry:
    """Return the stage called ``name``.

    Raises:
        StageNotFoundError: If no stage has that name.
    """

    for entry in table:
        if entry.name == name:
            return entry
    raise StageNotFoundError(name, tuple(entry.name for entry in table))
