"""
TopoMap: Configuration Management

This module provides centralised configuration management for the map
build pipeline. It loads configuration from environment variables
(optionally via a .env file), with strongly typed access via Pydantic
BaseSettings.

Key responsibilities:
- Load and validate configuration from environment variables
- Derive the fixed data directory layout (osm/, dem/, work/, output/)
- Expose a cached global configuration accessor for logging bootstrap

External dependencies:
- pydantic: Data validation and settings management
- pydantic-settings: Environment variable integration for settings
- python-dotenv: Optional .env loading for local development

Thread safety: Thread-safe (configuration is frozen after initial load)

Author: TopoMap Team
Status: Development
Version: v0.1.0
"""

# ============================================================================
# Imports
# ============================================================================

from __future__ import annotations

import re
import shlex
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from topomap.pipeline.errors import ConfigurationError

# ============================================================================
# Constants
# ============================================================================

DEFAULT_OSM_URL = "https://download.geofabrik.de/europe/great-britain-latest.osm.pbf"

_MAP_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

# ============================================================================
# Data Models
# ============================================================================


class BoundingBox(BaseModel):
    """Geographic bounding box in degrees (WGS84).

    The textual form is ``min_lon:min_lat:max_lon:max_lat``, which is also
    the ``--area`` format understood by the contour generator.
    """

    model_config = {"frozen": True}

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @classmethod
    def parse(cls, value: str) -> "BoundingBox":
        """Parse ``min_lon:min_lat:max_lon:max_lat``.

        Raises:
            ValueError: If the string is malformed or the box is empty or
                out of range.
        """

        parts = value.split(":")
        if len(parts) != 4:
            raise ValueError(
                f"bounding box {value!r} must have four ':'-separated values "
                "(min_lon:min_lat:max_lon:max_lat)"
            )
        try:
            min_lon, min_lat, max_lon, max_lat = (float(p) for p in parts)
        except ValueError as exc:
            raise ValueError(f"bounding box {value!r} contains a non-numeric value") from exc

        if not (-180.0 <= min_lon < max_lon <= 180.0):
            raise ValueError(f"bounding box {value!r} has invalid longitudes")
        if not (-90.0 <= min_lat < max_lat <= 90.0):
            raise ValueError(f"bounding box {value!r} has invalid latitudes")

        return cls(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    def as_area(self) -> str:
        """Return the ``min_lon:min_lat:max_lon:max_lat`` form."""

        return f"{self.min_lon:g}:{self.min_lat:g}:{self.max_lon:g}:{self.max_lat:g}"


class PipelinePaths(BaseModel):
    """Resolved directory layout for one data root.

    Attributes:
        data_dir: Absolute data root.
        osm_dir: Downloaded source geographic data.
        dem_dir: Generated elevation contour data.
        work_dir: Intermediate merged/split artifacts and compiler config.
        output_dir: Final compiled map images.
        tiles_dir: Split tile files (inside ``work_dir``).
        style_dir: Generated compiler styles (inside ``work_dir``).
        options_file: Generated compiler options file.
    """

    model_config = {"frozen": True}

    data_dir: Path
    osm_dir: Path
    dem_dir: Path
    work_dir: Path
    output_dir: Path
    tiles_dir: Path
    style_dir: Path
    options_file: Path

    def working_dirs(self) -> tuple[Path, ...]:
        """Directories the orchestrator creates before the first stage."""

        return (
            self.osm_dir,
            self.dem_dir,
            self.work_dir,
            self.output_dir,
            self.tiles_dir,
            self.style_dir,
        )


class PipelineConfig(BaseSettings):
    """Map build configuration loaded from environment variables.

    Environment variables use plain upper-case names (``DATA_DIR``,
    ``MAP_NAME``, ``MAP_ID``, ``FAMILY_ID``, ...). The instance is frozen:
    it is resolved once at startup and passed explicitly to the
    orchestrator.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
    )

    # Layout
    data_dir: Path = Field(default=Path("data"), alias="DATA_DIR", validate_default=True)

    # Map identity
    map_name: str = Field(default="UK_Topo", alias="MAP_NAME")
    map_id: int = Field(default=63240001, alias="MAP_ID")
    family_id: int = Field(default=6324, alias="FAMILY_ID")
    product_id: int = Field(default=1, alias="PRODUCT_ID")
    bbox: str = Field(default="-8.0:49.9:2.5:60.9", alias="BBOX")

    # Region naming
    area_prefix: str = Field(default="uk", alias="AREA_PREFIX")
    area_name: str = Field(default="United Kingdom", alias="AREA_NAME")
    series_name: str = Field(default="UK Topo Map", alias="SERIES_NAME")
    family_name: str = Field(default="UK OSM Maps", alias="FAMILY_NAME")
    country_name: str = Field(default="United Kingdom", alias="COUNTRY_NAME")
    country_abbr: str = Field(default="UK", alias="COUNTRY_ABBR")
    drive_on_left: bool = Field(default=True, alias="DRIVE_ON_LEFT")

    # Source data
    osm_url: str = Field(default=DEFAULT_OSM_URL, alias="OSM_URL")

    # Contours
    contours_enabled: bool = Field(default=True, alias="CONTOURS_ENABLED")
    contour_step: int = Field(default=20, alias="CONTOUR_STEP")
    contour_source: str = Field(default="view3", alias="CONTOUR_SOURCE")

    # Splitter
    splitter_max_nodes: int = Field(default=1_000_000, alias="SPLITTER_MAX_NODES")

    # External tools (shell-style command strings)
    downloader_cmd: str = Field(default="wget", alias="DOWNLOADER_CMD")
    contour_cmd: str = Field(default="phyghtmap", alias="CONTOUR_CMD")
    merger_cmd: str = Field(default="osmium", alias="MERGER_CMD")
    splitter_cmd: str = Field(default="splitter", alias="SPLITTER_CMD")
    compiler_cmd: str = Field(default="mkgmap", alias="COMPILER_CMD")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: str = Field(default="topomap.log", alias="LOG_FILE")

    @field_validator("data_dir")
    @classmethod
    def _resolve_data_dir(cls, value: Path) -> Path:
        return value.expanduser().resolve()

    @field_validator("bbox")
    @classmethod
    def _check_bbox(cls, value: str) -> str:
        BoundingBox.parse(value)
        return value

    @field_validator("map_name")
    @classmethod
    def _check_map_name(cls, value: str) -> str:
        if not _MAP_NAME_RE.match(value):
            raise ValueError(
                f"MAP_NAME {value!r} must be usable as a file name "
                "(letters, digits, '_', '-', '.')"
            )
        return value

    @field_validator("map_id")
    @classmethod
    def _check_map_id(cls, value: int) -> int:
        # The splitter numbers tiles upwards from the map id and the
        # compiler expects eight-digit tile names.
        if not 10_000_000 <= value <= 99_999_999:
            raise ValueError(f"MAP_ID {value} must be an eight-digit number")
        return value

    @field_validator("family_id")
    @classmethod
    def _check_family_id(cls, value: int) -> int:
        if not 1 <= value <= 65535:
            raise ValueError(f"FAMILY_ID {value} must be between 1 and 65535")
        return value

    @field_validator("product_id", "contour_step", "splitter_max_nodes")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError(f"value {value} must be positive")
        return value

    @field_validator(
        "downloader_cmd", "contour_cmd", "merger_cmd", "splitter_cmd", "compiler_cmd"
    )
    @classmethod
    def _check_command(cls, value: str) -> str:
        if not shlex.split(value):
            raise ValueError("tool command must not be empty")
        return value

    @field_validator("area_prefix")
    @classmethod
    def _check_area_prefix(cls, value: str) -> str:
        if not value or "/" in value:
            raise ValueError(f"AREA_PREFIX {value!r} must be a plain file name prefix")
        return value

    @property
    def bounding_box(self) -> BoundingBox:
        """Return the parsed ``BBOX`` setting."""

        return BoundingBox.parse(self.bbox)

    @property
    def paths(self) -> PipelinePaths:
        """Return the directory layout derived from ``data_dir``."""

        work_dir = self.data_dir / "work"
        return PipelinePaths(
            data_dir=self.data_dir,
            osm_dir=self.data_dir / "osm",
            dem_dir=self.data_dir / "dem",
            work_dir=work_dir,
            output_dir=self.data_dir / "output",
            tiles_dir=work_dir / "tiles",
            style_dir=work_dir / "style",
            options_file=work_dir / "mkgmap_options.args",
        )

    def tool_argv(self, tool: str) -> list[str]:
        """Split a configured tool command (e.g. ``"java -jar splitter.jar"``).

        Args:
            tool: One of ``downloader``, ``contour``, ``merger``,
                ``splitter`` or ``compiler``.
        """

        return shlex.split(getattr(self, f"{tool}_cmd"))


# ============================================================================
# Public API
# ============================================================================


def load_config(env_file: Optional[Path] = None) -> PipelineConfig:
    """Load the pipeline configuration.

    For local development this function will attempt to load a `.env` file
    from the current working directory if one is present. Environment
    variables always take precedence over values from an implicit `.env`.

    Args:
        env_file: Optional explicit path to a `.env` file. Values from an
            explicit file override the current environment.

    Returns:
        A fully populated, frozen :class:`PipelineConfig`.

    Raises:
        FileNotFoundError: If an explicit ``env_file`` does not exist.
        ConfigurationError: If any setting fails validation.
    """

    if env_file is not None:
        if not env_file.exists():
            msg = f"Environment file not found: {env_file}"
            raise FileNotFoundError(msg)
        load_dotenv(env_file, override=True)
    else:
        default_env = Path(".env")
        if default_env.exists():
            load_dotenv(default_env)

    try:
        return PipelineConfig()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


_global_config: Optional[PipelineConfig] = None


def get_config() -> PipelineConfig:
    """Return the cached process-wide configuration.

    Only the logging bootstrap relies on this accessor; pipeline code
    receives its configuration explicitly.
    """

    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config
