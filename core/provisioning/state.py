"""
Provisioning run state.

ExecutionState is owned by the sequencer for the duration of one run; the
frozen Incident and RunResult records are what callers get back.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from core.sql_client import Credentials


class StepPolicy(Enum):
    """What a step failure means for the run."""

    FATAL = "fatal"
    RECOVERABLE = "recoverable"


class OutcomeStatus(Enum):
    """Classified result of one step."""

    SUCCESS = "success"
    RECOVERABLE_FAILURE = "recoverable_failure"
    FATAL_FAILURE = "fatal_failure"
    SKIPPED = "skipped"


class RunStatus(Enum):
    """Overall run status."""

    COMPLETED_CLEAN = "completed_clean"
    COMPLETED_WITH_INCIDENTS = "completed_with_incidents"
    ABORTED = "aborted"


class IncidentKind(Enum):
    """Why an incident was recorded."""

    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Incident:
    """
    A non-fatal failure surfaced at the end of the run.

    Attributes:
        step: Name of the step the incident is attributed to
        tag: Short step tag (e.g. "Timezone")
        message: Operator-facing description, credentials redacted
        kind: FAILED, or SKIPPED when a dependency was not met
    """

    step: str
    tag: str
    message: str
    kind: IncidentKind = IncidentKind.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "tag": self.tag,
            "message": self.message,
            "kind": self.kind.value,
        }


@dataclass(frozen=True)
class StepOutcome:
    """Classified outcome of a single step execution."""

    status: OutcomeStatus
    message: str = ""


@dataclass
class ExecutionState:
    """
    Mutable state of one run.

    Incidents are append-only: record() is the only way in and nothing
    removes or edits an entry. ``artifacts`` carries files produced by one
    step for a later one (generated scripts).
    """

    correlation_id: str
    taints: Set[str] = field(default_factory=set)
    steps_executed: List[str] = field(default_factory=list)
    artifacts: Dict[str, Path] = field(default_factory=dict)
    reader_credentials: Optional[Credentials] = None
    _incidents: List[Incident] = field(default_factory=list)

    @property
    def incidents(self) -> Tuple[Incident, ...]:
        return tuple(self._incidents)

    def record(self, incident: Incident) -> None:
        self._incidents.append(incident)

    def taint(self, *flags: str) -> None:
        self.taints.update(flags)

    def blocking_taints(self, required_clean) -> List[str]:
        """Taint flags that invalidate a step's preconditions."""
        return sorted(flag for flag in required_clean if flag in self.taints)


@dataclass(frozen=True)
class RunResult:
    """
    Final result of a provisioning run.

    Attributes:
        status: Overall status
        incidents: Incidents in the order they were recorded
        fatal_step: Name of the step that aborted the run, if any
        fatal_message: Why it aborted
        steps_executed: Names of steps whose action was invoked
        taints: Taint flags set during the run
        correlation_id: Run identifier used in trace logs
    """

    status: RunStatus
    incidents: Tuple[Incident, ...] = ()
    fatal_step: Optional[str] = None
    fatal_message: str = ""
    steps_executed: Tuple[str, ...] = ()
    taints: Tuple[str, ...] = ()
    correlation_id: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status != RunStatus.ABORTED

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def incidents_for(self, tag: str) -> List[Incident]:
        return [i for i in self.incidents if i.tag == tag]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status.value,
            "incidents": [i.to_dict() for i in self.incidents],
            "fatal_step": self.fatal_step,
            "fatal_message": self.fatal_message,
            "steps_executed": list(self.steps_executed),
            "taints": list(self.taints),
            "correlation_id": self.correlation_id,
        }
