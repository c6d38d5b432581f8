"""TopoMap – map build CLI.

Builds a Garmin-compatible ``gmapsupp.img`` from OpenStreetMap data,
optionally with elevation contours. All settings come from environment
variables (or a ``.env`` file); see :mod:`topomap.core.config`.

Typical usage::

    DATA_DIR=/srv/maps MAP_NAME=UK_Topo python -m topomap.scripts.build_map

Re-running after a failure resumes from the first incomplete stage. To
redo a stage whose artifact already exists::

    python -m topomap.scripts.build_map --force download --force merge
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from topomap.core.config import PipelineConfig, load_config
from topomap.core.logging import get_logger, setup_logging
from topomap.orchestration.orchestrator import RunResult, run
from topomap.pipeline.errors import ConfigurationError


logger = get_logger(__name__)

CONFIG_ERROR_EXIT = 2


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="TopoMap – build a Garmin map image from OSM and elevation data",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Explicit .env file; its values override the environment",
    )
    parser.add_argument(
        "--force",
        action="append",
        default=[],
        metavar="STAGE",
        help=(
            "Re-run STAGE even if its artifact exists (download, contours, "
            "merge, split, compile). Can be given multiple times."
        ),
    )
    return parser.parse_args(argv)


def _log_banner(config: PipelineConfig) -> None:
    logger.info("=========================================")
    logger.info("TopoMap Garmin Map Builder")
    logger.info("=========================================")
    logger.info(
        "map=%s map_id=%d family_id=%d data_dir=%s contours=%s",
        config.map_name,
        config.map_id,
        config.family_id,
        config.data_dir,
        "on" if config.contours_enabled else "off",
    )


def _log_summary(result: RunResult) -> None:
    for outcome in result.outcomes:
        detail = f" (exit {outcome.exit_code})" if outcome.exit_code else ""
        logger.info(
            "  [%d] %-10s %s%s", outcome.position, outcome.name, outcome.status.value, detail
        )

    if result.succeeded:
        logger.info("To install on a Garmin device:")
        logger.info("  1. Connect the device via USB")
        logger.info("  2. Copy %s to the /GARMIN/ folder", result.primary_image)
        logger.info("  3. Safely eject and restart the device")
        return

    logger.error("Build FAILED at stage %r: %s", result.failed_stage, result.error)
    logger.error("Fix the problem and re-run; completed stages will be skipped.")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entrypoint; returns the process exit status."""

    args = _parse_args(argv)

    try:
        config = load_config(args.env_file)
    except (ConfigurationError, FileNotFoundError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return CONFIG_ERROR_EXIT

    setup_logging(config)
    _log_banner(config)

    try:
        result = run(config, force=args.force)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return CONFIG_ERROR_EXIT

    _log_summary(result)
    return result.exit_code


if __name__ == "__main__":  # pragma: no cover - manual CLI entry
    sys.exit(main())
