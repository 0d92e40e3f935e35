"""Stage representation for in-process execution."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List


class StageSkipped(Exception):
    """Raised by an optional stage whose inputs are absent."""


@dataclass
class Stage:
    """A single walkthrough step with its dependencies.

    Attributes
    ----------
    stage_id : str
        Short identifier (e.g. "qc", "cluster")
    name : str
        Human-readable stage name (e.g. "Quality control")
    func : Callable
        Called with the shared context; mutates it in place
    depends_on : List[str]
        Stage IDs that must run first
    optional : bool
        Whether the stage may raise :class:`StageSkipped` to be skipped
        instead of stopping the run
    description : str
        One-line summary shown by ``scrna-walkthrough stages``

    Example
    -------
    >>> stage = Stage("qc", "Quality control", run_qc, depends_on=["load"])
    >>> stage.run(context)
    """

    stage_id: str
    name: str
    func: Callable[[Any], None]
    depends_on: List[str] = field(default_factory=list)
    optional: bool = False
    description: str = ""

    def run(self, context: Any) -> None:
        """Execute the stage on ``context``."""
        self.func(context)

    def to_dict(self) -> Dict[str, Any]:
        """Convert stage to dictionary for serialization.

        The callable is stored by qualified name only.
        """
        return {
            "stage_id": self.stage_id,
            "name": self.name,
            "func": getattr(self.func, "__qualname__", repr(self.func)),
            "depends_on": list(self.depends_on),
            "optional": self.optional,
            "description": self.description,
        }
