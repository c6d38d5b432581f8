"""TopoMap – top-level package exports.

This module re-exports the pipeline entry points for convenience.
"""

from topomap.core.config import PipelineConfig, load_config
from topomap.orchestration.orchestrator import RunResult, RunStatus, StageOutcome, StageStatus, run
