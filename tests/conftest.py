"""Shared fixtures: a pipeline config rooted in tmp_path and fake tools."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Set

import pytest

from topomap.core.config import PipelineConfig
from topomap.pipeline.runner import ToolCommand


def _option(command: ToolCommand, name: str) -> str:
    prefix = f"--{name}="
    for arg in command.args:
        if arg.startswith(prefix):
            return arg[len(prefix):]
    raise AssertionError(f"{command.display()} has no --{name}")


class FakeToolRunner:
    """Stand-in for the external tools.

    Each tool writes a small placeholder artifact where the real tool
    would. Behaviour can be tuned per test:

    - ``exit_codes``: tool name -> non-zero status to return instead.
    - ``silent``: tools that exit 0 without writing anything.
    - ``compiler_combines``: whether the primary compiler run writes
      ``gmapsupp.img`` (per-tile images are always written).
    - ``fallback_combines``: whether the secondary compiler run does.
    """

    def __init__(self) -> None:
        self.calls: List[ToolCommand] = []
        self.exit_codes: Dict[str, int] = {}
        self.silent: Set[str] = set()
        self.compiler_combines = True
        self.fallback_combines = True

    def count(self, tool: str) -> int:
        return sum(1 for call in self.calls if call.command == tool)

    def run(self, command: ToolCommand) -> int:
        self.calls.append(command)
        tool = command.command
        if self.exit_codes.get(tool):
            return self.exit_codes[tool]
        if tool in self.silent:
            return 0
        getattr(self, f"_{tool}")(command)
        return 0

    def _wget(self, command: ToolCommand) -> None:
        dest = Path(command.args[command.args.index("-O") + 1])
        dest.write_bytes(b"osm-source-data")

    def _phyghtmap(self, command: ToolCommand) -> None:
        prefix = _option(command, "output-prefix")
        Path(f"{prefix}_lon-8.00_2.50lat49.90_60.90_view3.osm.pbf").write_bytes(b"contours")

    def _osmium(self, command: ToolCommand) -> None:
        _, first, second, _, out = command.args
        Path(out).write_bytes(Path(first).read_bytes() + Path(second).read_bytes())

    def _splitter(self, command: ToolCommand) -> None:
        assert command.cwd is not None
        map_id = int(_option(command, "mapid"))
        for tile_id in (map_id, map_id + 1):
            (command.cwd / f"{tile_id}.osm.pbf").write_bytes(b"tile")
        (command.cwd / "template.args").write_text("mapname: 63240001\n")

    def _mkgmap(self, command: ToolCommand) -> None:
        out_dir = Path(_option(command, "output-dir"))
        inputs = [Path(a) for a in command.args if not a.startswith("-")]
        primary = any(p.name.endswith(".osm.pbf") for p in inputs)
        if primary:
            for tile in inputs:
                if tile.name.endswith(".osm.pbf"):
                    name = tile.name[: -len(".osm.pbf")] + ".img"
                    (out_dir / name).write_bytes(b"tile-image")
            combine = self.compiler_combines
        else:
            combine = self.fallback_combines
        if combine:
            (out_dir / "gmapsupp.img").write_bytes(b"garmin-map-image")


@pytest.fixture
def fake_tools() -> FakeToolRunner:
    return FakeToolRunner()


@pytest.fixture
def config(tmp_path: Path) -> PipelineConfig:
    return PipelineConfig(data_dir=tmp_path / "data", log_file="")


@pytest.fixture
def no_contours_config(tmp_path: Path) -> PipelineConfig:
    return PipelineConfig(data_dir=tmp_path / "data", contours_enabled=False, log_file="")
