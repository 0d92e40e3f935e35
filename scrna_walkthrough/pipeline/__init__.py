"""Pipeline orchestration.

Runs the walkthrough stages in their fixed order with dependency
checks, per-stage logs and checkpoint/resume support.

Example Usage
-------------
>>> from scrna_walkthrough.config import WalkthroughConfig
>>> from scrna_walkthrough.pipeline import run_walkthrough
>>> config = WalkthroughConfig.from_yaml("walkthrough.yaml")
>>> context = run_walkthrough(config, end_stage="cluster")
>>> context.clustering.to_frame()
"""

# Stage representation
from .stage import Stage, StageSkipped

# Logging
from .logger import (
    ColoredFormatter,
    PipelineLogger,
)

# Execution
from .executor import PipelineExecutor

# Walkthrough
from .walkthrough import (
    STAGE_ORDER,
    WALKTHROUGH_STAGES,
    WalkthroughContext,
    build_walkthrough,
    run_walkthrough,
)

__all__ = [
    # Stage
    "Stage",
    "StageSkipped",
    # Logging
    "ColoredFormatter",
    "PipelineLogger",
    # Execution
    "PipelineExecutor",
    # Walkthrough
    "STAGE_ORDER",
    "WALKTHROUGH_STAGES",
    "WalkthroughContext",
    "build_walkthrough",
    "run_walkthrough",
]
