"""
SMG database provisioning.

This package runs the multi-step provisioning sequence for an SMG schema:
- Immutable run input (ProvisioningConfig)
- Data-driven step table with per-step failure policy
- Incident aggregation with deferred reporting
- Idempotent reader credential provisioning

Usage:
    from core.provisioning import Collaborators, ProvisioningSequencer, RunStatus

    sequencer = ProvisioningSequencer(
        Collaborators.from_settings(settings),
        settings,
        report_dir=settings.paths.report_dir,
    )
    result = sequencer.run(config)

    if result.status is RunStatus.ABORTED:
        print(f"Aborted at {result.fatal_step}: {result.fatal_message}")
    for incident in result.incidents:
        print(incident.tag, incident.message)
"""

from core.provisioning.models import ProvisioningConfig
from core.provisioning.state import (
    ExecutionState,
    Incident,
    IncidentKind,
    OutcomeStatus,
    RunResult,
    RunStatus,
    StepPolicy,
)
from core.provisioning.executor import (
    Collaborators,
    ProvisioningSequencer,
    Step,
    StepContext,
    SubStep,
)
from core.provisioning.credentials import (
    InMemoryKeyValueStore,
    JsonKeyValueStore,
    ReaderCredentials,
    ensure_reader_credentials,
)

__all__ = [
    "ProvisioningConfig",
    "ExecutionState",
    "Incident",
    "IncidentKind",
    "OutcomeStatus",
    "RunResult",
    "RunStatus",
    "StepPolicy",
    "Collaborators",
    "ProvisioningSequencer",
    "Step",
    "StepContext",
    "SubStep",
    "InMemoryKeyValueStore",
    "JsonKeyValueStore",
    "ReaderCredentials",
    "ensure_reader_credentials",
]
