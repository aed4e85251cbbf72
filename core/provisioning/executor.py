"""
Provisioning sequencer.

Runs the ordered step table against one ProvisioningConfig, classifying each
step outcome by the step's declared policy:

- SUCCESS: continue
- RECOVERABLE failure: record an Incident, set the step's taint flags, continue
- FATAL failure: stop immediately and return ABORTED

When the run ends, including aborted runs, any generated script still on disk
is deleted, an incident report is written and incidents are flushed to the
log sink.
"""

import logging
import uuid
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, FrozenSet, List, Optional, Sequence, Tuple

from core.errors import DataDependencyError, ValidationError, safe_message
from core.event_logger import LogSink, Severity
from core.process import ProcessLauncher, ProcessResult
from core.provisioning.credentials import JsonKeyValueStore, KeyValueStore
from core.provisioning.models import ProvisioningConfig
from core.provisioning.state import (
    ExecutionState,
    Incident,
    IncidentKind,
    OutcomeStatus,
    RunResult,
    RunStatus,
    StepOutcome,
    StepPolicy,
)
from core.provisioning.templates import remove_generated_scripts
from core.sql_client import SqlClient

logger = logging.getLogger(__name__)

VALIDATION_STEP = "Validate configuration"
CLEANUP_STEP = "Delete generated scripts"


# =============================================================================
# Step definitions
# =============================================================================

@dataclass(frozen=True)
class SubStep:
    """One part of a multi-part step."""
    name: str
    action: Callable[["StepContext"], None]


@dataclass(frozen=True)
class Step:
    """
    A named unit of the provisioning sequence.

    Attributes:
        name: Human-readable step name
        tag: Short identifier used on incidents
        policy: FATAL aborts the run on failure, RECOVERABLE records an Incident
        action: Callable receiving the StepContext (None when substeps are used)
        substeps: Ordered parts; a failing part skips the remaining ones
        taints: Flags set when this step fails recoverably
        requires: Flags that must not be set for this step to run
    """
    name: str
    tag: str
    policy: StepPolicy
    action: Optional[Callable[["StepContext"], None]] = None
    substeps: Tuple[SubStep, ...] = ()
    taints: FrozenSet[str] = frozenset()
    requires: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if (self.action is None) == (not self.substeps):
            raise ValueError(f"Step '{self.name}' needs exactly one of action or substeps")


@dataclass
class Collaborators:
    """External capabilities a run may use."""
    sql: SqlClient
    launcher: ProcessLauncher
    store: KeyValueStore
    sink: LogSink

    @classmethod
    def from_settings(cls, settings) -> "Collaborators":
        launcher = ProcessLauncher.from_settings(settings)
        return cls(
            sql=SqlClient.from_settings(settings, launcher),
            launcher=launcher,
            store=JsonKeyValueStore(settings.paths.credential_store),
            sink=LogSink(settings.paths.event_log),
        )


@dataclass
class StepContext:
    """
    What a step action gets to work with.

    ``resources`` is closed when the step ends, whatever the outcome. It is for
    handles that live no longer than one step; SqlClient already scopes each
    connection to a single call. Generated scripts outlive their step and are
    removed by the sequencer when the run ends.
    """
    config: ProvisioningConfig
    state: ExecutionState
    settings: object
    collaborators: Collaborators
    step: Step
    resources: ExitStack
    recorded: List[Incident] = field(default_factory=list)

    @property
    def sql(self) -> SqlClient:
        return self.collaborators.sql

    @property
    def launcher(self) -> ProcessLauncher:
        return self.collaborators.launcher

    @property
    def store(self) -> KeyValueStore:
        return self.collaborators.store

    @property
    def log_prefix(self) -> str:
        return f"[{self.state.correlation_id}]"

    def record(self, message: str, kind: IncidentKind = IncidentKind.FAILED) -> None:
        """Record a sub-failure without failing the step."""
        incident = Incident(self.step.name, self.step.tag, message, kind)
        self.state.record(incident)
        self.recorded.append(incident)
        logger.warning(f"{self.log_prefix} {self.step.tag}: {message}")

    def run_tool(self, command: str, args: Sequence[str], **kwargs) -> ProcessResult:
        """Run a process and raise ExternalToolError on non-zero exit."""
        return self.launcher.run(command, list(args), **kwargs).check()


# =============================================================================
# Sequencer
# =============================================================================

class ProvisioningSequencer:
    """
    Runs the provisioning step table.

    Usage:
        sequencer = ProvisioningSequencer(Collaborators.from_settings(settings), settings)
        result = sequencer.run(config)
        sys.exit(result.exit_code)
    """

    def __init__(
        self,
        collaborators: Collaborators,
        settings,
        steps: Optional[Sequence[Step]] = None,
        report_dir: Optional[Path] = None,
    ):
        if steps is None:
            from core.provisioning.steps import STEP_TABLE
            steps = STEP_TABLE
        self.collaborators = collaborators
        self.settings = settings
        self.steps = tuple(steps)
        self.report_dir = report_dir
        self.last_report: Optional[Path] = None

    def run(self, config: ProvisioningConfig) -> RunResult:
        """
        Validate the config and run every step in order.

        Returns:
            RunResult; ABORTED runs name the fatal step
        """
        state = ExecutionState(correlation_id=f"prov-{uuid.uuid4().hex[:8]}")
        log_prefix = f"[{state.correlation_id}]"

        violations = config.validate()
        if violations:
            message = "; ".join(violations)
            logger.error(f"{log_prefix} Invalid configuration: {message}")
            return self._finish(config, state, RunStatus.ABORTED, VALIDATION_STEP, message)

        logger.info(
            f"{log_prefix} Provisioning {config.customer} "
            f"(schema {config.schema_version}) on {config.target}"
        )

        for step in self.steps:
            outcome = self._run_step(step, config, state)
            if outcome.status == OutcomeStatus.FATAL_FAILURE:
                logger.error(f"{log_prefix} Aborted at '{step.name}': {outcome.message}")
                return self._finish(config, state, RunStatus.ABORTED, step.name, outcome.message)

        status = (
            RunStatus.COMPLETED_WITH_INCIDENTS if state.incidents
            else RunStatus.COMPLETED_CLEAN
        )
        logger.info(f"{log_prefix} Provisioning finished: {status.value}")
        return self._finish(config, state, status)

    def _run_step(
        self, step: Step, config: ProvisioningConfig, state: ExecutionState
    ) -> StepOutcome:
        """Execute one step and classify its outcome."""
        log_prefix = f"[{state.correlation_id}]"

        blocking = state.blocking_taints(step.requires)
        if blocking:
            message = f"Skipped: depends on {', '.join(blocking)}, which failed earlier"
            state.record(Incident(step.name, step.tag, message, IncidentKind.SKIPPED))
            logger.warning(f"{log_prefix} {step.name}: {message}")
            return StepOutcome(OutcomeStatus.SKIPPED, message)

        logger.info(f"{log_prefix} Step: {step.name}")
        state.steps_executed.append(step.name)

        ctx = None
        try:
            with ExitStack() as resources:
                ctx = StepContext(
                    config=config,
                    state=state,
                    settings=self.settings,
                    collaborators=self.collaborators,
                    step=step,
                    resources=resources,
                )
                if step.substeps:
                    self._run_substeps(ctx)
                else:
                    step.action(ctx)

        except DataDependencyError as e:
            message = f"Skipped: {safe_message(e)}"
            state.record(Incident(step.name, step.tag, message, IncidentKind.SKIPPED))
            logger.warning(f"{log_prefix} {step.name}: {message}")
            return StepOutcome(OutcomeStatus.SKIPPED, message)

        except Exception as e:
            message = safe_message(e)
            if step.policy is StepPolicy.FATAL or isinstance(e, ValidationError):
                logger.debug(f"{log_prefix} {step.name} failure detail", exc_info=True)
                return StepOutcome(OutcomeStatus.FATAL_FAILURE, message)

            logger.warning(f"{log_prefix} {step.name} failed: {message}")
            state.record(Incident(step.name, step.tag, message))
            state.taint(*step.taints)
            return StepOutcome(OutcomeStatus.RECOVERABLE_FAILURE, message)

        if ctx.recorded:
            state.taint(*step.taints)
            return StepOutcome(
                OutcomeStatus.RECOVERABLE_FAILURE,
                f"{len(ctx.recorded)} sub-step incident(s)",
            )
        return StepOutcome(OutcomeStatus.SUCCESS)

    def _run_substeps(self, ctx: StepContext) -> None:
        """Run sub-steps in order; after a failure the rest are skipped."""
        substeps = ctx.step.substeps
        for index, sub in enumerate(substeps):
            logger.info(f"{ctx.log_prefix} Sub-step: {sub.name}")
            try:
                sub.action(ctx)
            except Exception as e:
                if ctx.step.policy is StepPolicy.FATAL:
                    raise
                if isinstance(e, DataDependencyError):
                    ctx.record(f"{sub.name} skipped: {safe_message(e)}", IncidentKind.SKIPPED)
                else:
                    ctx.record(f"{sub.name} failed: {safe_message(e)}")
                for later in substeps[index + 1:]:
                    ctx.record(
                        f"{later.name} skipped: depends on '{sub.name}'",
                        IncidentKind.SKIPPED,
                    )
                return

    def _finish(
        self,
        config: ProvisioningConfig,
        state: ExecutionState,
        status: RunStatus,
        fatal_step: Optional[str] = None,
        fatal_message: str = "",
    ) -> RunResult:
        """Remove leftover scripts, build the result, write the report and flush the sink."""
        log_prefix = f"[{state.correlation_id}]"

        for path, e in remove_generated_scripts(state.artifacts):
            message = f"Could not delete generated script {path.name}: {e.strerror or e}"
            logger.error(f"{log_prefix} {message}")
            state.record(Incident(CLEANUP_STEP, "Cleanup", message))
        if status is RunStatus.COMPLETED_CLEAN and state.incidents:
            status = RunStatus.COMPLETED_WITH_INCIDENTS

        result = RunResult(
            status=status,
            incidents=state.incidents,
            fatal_step=fatal_step,
            fatal_message=fatal_message,
            steps_executed=tuple(state.steps_executed),
            taints=tuple(sorted(state.taints)),
            correlation_id=state.correlation_id,
        )

        if self.report_dir is not None:
            from core.provisioning.report import write_report
            try:
                self.last_report = write_report(result, config, self.report_dir)
            except OSError as e:
                logger.error(f"{log_prefix} Could not write incident report: {e}")

        try:
            self._flush_to_sink(result, config)
        except OSError as e:
            logger.error(f"{log_prefix} Could not write to the event log: {e}")

        return result

    def _flush_to_sink(self, result: RunResult, config: ProvisioningConfig) -> None:
        sink = self.collaborators.sink
        for incident in result.incidents:
            severity = Severity.WARNING if incident.kind is IncidentKind.FAILED else Severity.INFO
            sink.append(f"{incident.step}: {incident.message}", severity, incident.tag)
        if result.fatal_step:
            sink.append(
                f"Aborted at '{result.fatal_step}': {result.fatal_message}", Severity.ERROR, "Sequencer"
            )
        sink.append(
            f"Run {result.correlation_id} for {config.customer} finished: {result.status.value} "
            f"({len(result.incidents)} incident(s))",
            Severity.ERROR if result.status is RunStatus.ABORTED else Severity.INFO,
            "Sequencer",
        )
