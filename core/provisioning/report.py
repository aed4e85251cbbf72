"""
Human-readable incident report.

Written once per run, aborted runs included, next to (not inside) the trace
log so operators get a short summary of what needs attention.
"""

import re
from pathlib import Path
from typing import List

from core.provisioning.models import ProvisioningConfig
from core.provisioning.state import IncidentKind, RunResult, RunStatus
from core.timestamps import filestamp, isonow

TAINT_NOTES = {
    "config-dirty": "Configuration data may be partially applied; review the customer parameters.",
    "reader-credentials": "Reader credentials are missing; reader access was not configured.",
}


def format_report(result: RunResult, config: ProvisioningConfig) -> str:
    """Render the report text."""
    lines: List[str] = [
        f"SMG provisioning report for {config.customer}",
        f"Generated:      {isonow()}",
        f"Run:            {result.correlation_id}",
        f"Target:         {config.target}",
        f"Schema version: {config.schema_version}",
        f"Status:         {result.status.value}",
        f"Steps executed: {len(result.steps_executed)}",
    ]

    if result.status is RunStatus.ABORTED:
        lines.append("")
        lines.append(f"ABORTED at '{result.fatal_step}': {result.fatal_message}")

    lines.append("")
    if result.incidents:
        lines.append(f"Incidents ({len(result.incidents)}):")
        for number, incident in enumerate(result.incidents, start=1):
            marker = "SKIP" if incident.kind is IncidentKind.SKIPPED else "FAIL"
            lines.append(f"  {number:>2}. [{marker}] {incident.tag}: {incident.message}")
    else:
        lines.append("Incidents: none")

    if result.taints:
        lines.append("")
        lines.append("Attention:")
        for flag in result.taints:
            lines.append(f"  - {flag}: {TAINT_NOTES.get(flag, 'set during the run')}")

    return "\n".join(lines) + "\n"


def write_report(result: RunResult, config: ProvisioningConfig, report_dir: Path) -> Path:
    """Write the report to ``incidents_<customer>_<stamp>.log`` and return its path."""
    report_dir = Path(report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)
    customer = re.sub(r"[^A-Za-z0-9_-]", "_", config.customer or "") or "unknown"
    path = report_dir / f"incidents_{customer}_{filestamp()}_{result.correlation_id}.log"
    path.write_text(format_report(result, config), encoding="utf-8")
    return path
