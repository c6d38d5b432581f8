"""TopoMap – generated compiler configuration.

The map compiler reads a plain-text options file and a style directory.
Both are regenerated from the configuration on every run, so they are
never treated as cached artifacts.
"""

from __future__ import annotations

from pathlib import Path

from topomap.core.config import PipelineConfig
from topomap.core.logging import get_logger


logger = get_logger(__name__)

CONTOUR_STYLE = "contours"

_CONTOUR_LINES = """\
# Contour lines
contour=elevation & contour_ext=elevation_minor { name '${ele|conv:m=>ft}'; } [0x20 resolution 23]
contour=elevation & contour_ext=elevation_medium { name '${ele|conv:m=>ft}'; } [0x21 resolution 21]
contour=elevation & contour_ext=elevation_major { name '${ele|conv:m=>ft}'; } [0x22 resolution 20]
"""

_CONTOUR_POINTS = """\
# Contour points/peaks
natural=peak [0x6616 resolution 20]
"""


def render_options(config: PipelineConfig) -> str:
    """Return the options file body for ``config``."""

    lines = [
        "# General options",
        f"family-id: {config.family_id}",
        f"product-id: {config.product_id}",
        f"series-name: {config.series_name}",
        f"family-name: {config.family_name}",
        f"area-name: {config.area_name}",
        "",
        "# Map features",
        "latin1",
        "lower-case",
        "make-all-cycleways",
        "link-pois-to-ways",
        "add-pois-to-areas",
        "generate-sea=extend-sea-sectors",
        "draw-priority: 25",
        "transparent",
        "",
        "# Routing options",
        "route",
    ]
    if config.drive_on_left:
        lines.append("drive-on-left")
    lines += [
        "check-roundabouts",
        "add-boundary-nodes-at-admin-boundaries=2",
        "",
        "# Index options",
        "index",
        "housenumbers",
        "",
        "# Address search",
        "location-autofill=is_in,nearest",
        "",
        "# Performance",
        "max-jobs",
    ]
    return "\n".join(lines) + "\n"


def write_options_file(config: PipelineConfig) -> Path:
    """(Re)write the compiler options file and return its path."""

    path = config.paths.options_file
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_options(config), encoding="utf-8")
    logger.info("Wrote compiler options to %s", path)
    return path


def write_contour_style(style_dir: Path) -> Path:
    """(Re)write the contour style used by the compiler.

    Returns:
        The directory of the ``contours`` style.
    """

    style = style_dir / CONTOUR_STYLE
    style.mkdir(parents=True, exist_ok=True)
    (style / "version").write_text("1\n", encoding="utf-8")
    (style / "lines").write_text(_CONTOUR_LINES, encoding="utf-8")
    (style / "points").write_text(_CONTOUR_POINTS, encoding="utf-8")
    logger.info("Wrote %s style to %s", CONTOUR_STYLE, style)
    return style
