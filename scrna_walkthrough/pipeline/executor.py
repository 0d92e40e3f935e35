"""In-process stage execution with checkpoint support."""

from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
import json
import logging
import time

from .logger import PipelineLogger
from .stage import Stage, StageSkipped


class PipelineExecutor:
    """Runs registered stages in dependency order on a shared context.

    The context is any object with an ``adata`` attribute; stages mutate
    it in place. Completed stages are recorded in a JSON state file and,
    when ``checkpoint_dir`` is set, the AnnData is written as ``.h5ad``
    after every stage so a later run can resume.

    Parameters
    ----------
    logger : PipelineLogger, optional
        Run logger; stage banners go to the module logger if None
    state_file : str or Path, optional
        Path to checkpoint state file
    checkpoint_dir : str or Path, optional
        Directory for per-stage ``.h5ad`` checkpoints; disabled if None

    Example
    -------
    >>> executor = PipelineExecutor(logger, state_file="out/state.json")
    >>> executor.register(Stage("load", "Load data", load_func))
    >>> executor.register(Stage("qc", "Quality control", qc_func, depends_on=["load"]))
    >>> executor.run(context)
    ['load', 'qc']
    """

    def __init__(
        self,
        logger: Optional[PipelineLogger] = None,
        state_file: Optional[Path] = None,
        checkpoint_dir: Optional[Path] = None,
    ):
        self.logger = logger
        self.log = logger.logger if logger is not None else logging.getLogger(__name__)
        self.state_file = Path(state_file) if state_file else Path(".walkthrough_state.json")
        self.checkpoint_dir = Path(checkpoint_dir) if checkpoint_dir else None
        self.stages: Dict[str, Stage] = {}
        self.completed_stages: List[str] = []
        self.checkpoints: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Registration and ordering
    # ------------------------------------------------------------------

    def register(self, stage: Stage) -> None:
        """Register a stage; raises ValueError on a duplicate ID."""
        if stage.stage_id in self.stages:
            raise ValueError(f"Stage '{stage.stage_id}' already registered")
        self.stages[stage.stage_id] = stage

    def register_stage(
        self,
        stage_id: str,
        func: Callable[[Any], None],
        depends_on: Optional[List[str]] = None,
        name: Optional[str] = None,
        optional: bool = False,
    ) -> Stage:
        """Build and register a :class:`Stage` from a function."""
        stage = Stage(
            stage_id=stage_id,
            name=name or stage_id,
            func=func,
            depends_on=list(depends_on or []),
            optional=optional,
        )
        self.register(stage)
        return stage

    def validate_dependencies(self) -> Tuple[bool, List[str]]:
        """Check that every dependency names a registered stage."""
        errors = []
        for stage_id, stage in self.stages.items():
            for dep in stage.depends_on:
                if dep not in self.stages:
                    errors.append(f"Stage '{stage_id}' depends on unknown stage '{dep}'")
        return (len(errors) == 0, errors)

    def get_execution_order(self) -> List[str]:
        """Topological order of the registered stages.

        Ties are broken by registration order.

        Raises
        ------
        ValueError
            On an unknown dependency or a dependency cycle
        """
        valid, errors = self.validate_dependencies()
        if not valid:
            raise ValueError("; ".join(errors))

        in_degree = {sid: len(stage.depends_on) for sid, stage in self.stages.items()}
        queue = deque([sid for sid, degree in in_degree.items() if degree == 0])
        order = []

        while queue:
            stage_id = queue.popleft()
            order.append(stage_id)
            for other_id, other in self.stages.items():
                if stage_id in other.depends_on:
                    in_degree[other_id] -= 1
                    if in_degree[other_id] == 0:
                        queue.append(other_id)

        if len(order) != len(self.stages):
            raise ValueError("Circular dependency detected")
        return order

    def plan(
        self,
        start_stage: Optional[str] = None,
        end_stage: Optional[str] = None,
    ) -> List[str]:
        """Slice of the execution order from ``start_stage`` to ``end_stage``.

        Raises
        ------
        ValueError
            If either stage is unknown or the end comes before the start
        """
        order = self.get_execution_order()
        start_idx, end_idx = 0, len(order) - 1
        if start_stage:
            if start_stage not in order:
                raise ValueError(f"Start stage '{start_stage}' not found")
            start_idx = order.index(start_stage)
        if end_stage:
            if end_stage not in order:
                raise ValueError(f"End stage '{end_stage}' not found")
            end_idx = order.index(end_stage)
        if end_idx < start_idx:
            raise ValueError(
                f"End stage '{end_stage}' comes before start stage '{start_stage}'"
            )
        return order[start_idx:end_idx + 1]

    # ------------------------------------------------------------------
    # State and checkpoints
    # ------------------------------------------------------------------

    def load_state(self) -> None:
        """Load completed stages and checkpoint paths from the state file."""
        if not self.state_file.exists():
            self.log.debug("No checkpoint file found, starting fresh")
            return

        try:
            with open(self.state_file, "r") as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.log.warning("Failed to load checkpoint state %s: %s", self.state_file, e)
            self.completed_stages = []
            self.checkpoints = {}
            return

        self.completed_stages = list(state.get("completed_stages", []))
        self.checkpoints = dict(state.get("checkpoints", {}))
        self.log.info("Loaded checkpoint: %d stages completed", len(self.completed_stages))
        if self.completed_stages:
            self.log.info("Last completed: %s", self.completed_stages[-1])

    def save_state(self) -> None:
        """Write completed stages and checkpoint paths to the state file."""
        from .. import __version__

        state = {
            "completed_stages": self.completed_stages,
            "checkpoints": self.checkpoints,
            "timestamp": datetime.now().isoformat(),
            "version": __version__,
        }
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.state_file, "w") as f:
            json.dump(state, f, indent=2)

    def clear_state(self) -> None:
        """Forget completed stages (for a fresh run)."""
        if self.state_file.exists():
            self.state_file.unlink()
            self.log.info("Cleared checkpoint state")
        self.completed_stages = []
        self.checkpoints = {}

    def write_checkpoint(self, context: Any, stage_id: str) -> Optional[Path]:
        """Write ``context.adata`` to ``<checkpoint_dir>/<stage_id>.h5ad``."""
        if self.checkpoint_dir is None or getattr(context, "adata", None) is None:
            return None
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        path = self.checkpoint_dir / f"{stage_id}.h5ad"
        context.adata.write_h5ad(path)
        self.checkpoints[stage_id] = str(path)
        self.log.debug("Wrote checkpoint %s", path)
        return path

    def latest_checkpoint(self, before: Optional[str] = None) -> Optional[Tuple[str, Path]]:
        """Most recent existing checkpoint, optionally among stages before ``before``.

        Returns
        -------
        Tuple[str, Path], optional
            (stage_id, path) or None
        """
        order = self.get_execution_order()
        candidates = order[:order.index(before)] if before in order else order
        for stage_id in reversed(candidates):
            path = self.checkpoints.get(stage_id)
            if path is None and self.checkpoint_dir is not None:
                path = str(self.checkpoint_dir / f"{stage_id}.h5ad")
            if path is not None and Path(path).exists():
                return stage_id, Path(path)
        return None

    def _restore(self, context: Any, before: str) -> None:
        """Reload ``context.adata`` from the checkpoint preceding ``before``."""
        import anndata as ad

        found = self.latest_checkpoint(before=before)
        if found is None:
            raise ValueError(
                f"Cannot start at stage '{before}': no AnnData in memory and no "
                "h5ad checkpoint from an earlier stage (enable checkpoint_h5ad)"
            )
        stage_id, path = found
        self.log.info("Restoring AnnData from checkpoint of stage '%s': %s", stage_id, path)
        context.adata = ad.read_h5ad(path)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _stage_start(self, stage: Stage) -> None:
        if self.logger is not None:
            self.logger.log_stage_start(stage.stage_id, stage.name)
        else:
            self.log.info("Starting stage %s: %s", stage.stage_id, stage.name)

    def _stage_complete(self, stage: Stage, duration: float) -> None:
        if self.logger is not None:
            self.logger.log_stage_complete(stage.stage_id, duration)
        else:
            self.log.info("Stage %s completed in %.1fs", stage.stage_id, duration)

    def _stage_error(self, stage: Stage, error: str) -> None:
        if self.logger is not None:
            self.logger.log_stage_error(stage.stage_id, error)
        else:
            self.log.error("Stage %s failed: %s", stage.stage_id, error)

    def execute_stage(self, stage: Stage, context: Any) -> bool:
        """Run one stage; returns False if it was skipped.

        Exceptions other than :class:`StageSkipped` from an optional stage
        are logged and re-raised.
        """
        self._stage_start(stage)
        start_time = time.time()
        try:
            stage.run(context)
        except StageSkipped as e:
            if not stage.optional:
                self._stage_error(stage, str(e))
                raise ValueError(f"Required stage '{stage.stage_id}' cannot run: {e}") from e
            if self.logger is not None:
                self.logger.log_stage_skip(stage.stage_id, str(e))
            else:
                self.log.info("[SKIP] Stage %s: %s", stage.stage_id, e)
            return False
        except Exception as e:
            self._stage_error(stage, str(e))
            raise
        self._stage_complete(stage, time.time() - start_time)
        return True

    def run(
        self,
        context: Any,
        start_stage: Optional[str] = None,
        end_stage: Optional[str] = None,
        dry_run: bool = False,
        force: bool = False,
        resume: bool = False,
    ) -> List[str]:
        """Execute stages from ``start_stage`` to ``end_stage``.

        Parameters
        ----------
        context : Any
            Shared state passed to every stage
        start_stage : str, optional
            Stage ID to start from (default: first stage)
        end_stage : str, optional
            Stage ID to end at (default: last stage)
        dry_run : bool
            If True, log the plan without running
        force : bool
            If True, discard the state file and re-run every stage
        resume : bool
            If True, skip stages recorded as completed and reload the
            AnnData from the last checkpoint

        Returns
        -------
        List[str]
            IDs of the stages that ran
        """
        order = self.plan(start_stage, end_stage)

        if force:
            self.clear_state()
        elif resume:
            self.load_state()
            order = [sid for sid in order if sid not in self.completed_stages]
        else:
            self.completed_stages = []

        self.log.info("Execution plan: %s", " -> ".join(order) if order else "(nothing to run)")
        if dry_run:
            for stage_id in order:
                stage = self.stages[stage_id]
                self.log.info("[DRY RUN] Would run %s: %s", stage_id, stage.name)
            return []
        if not order:
            return []

        first_overall = self.get_execution_order()[0]
        if getattr(context, "adata", None) is None and order[0] != first_overall:
            self._restore(context, order[0])

        executed = []
        for stage_id in order:
            stage = self.stages[stage_id]
            if self.execute_stage(stage, context):
                executed.append(stage_id)
                self.write_checkpoint(context, stage_id)
            if stage_id not in self.completed_stages:
                self.completed_stages.append(stage_id)
            self.save_state()

        self.log.info("Walkthrough completed: %d stages run", len(executed))
        return executed
