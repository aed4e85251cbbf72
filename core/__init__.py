"""
Core shared utilities for SMG database provisioning.

This module consolidates common functionality used across:
- core/provisioning (the provisioning sequencer and its steps)
- scripts/provision_database.py (CLI)
- scripts/list_gpo_links.py (GPO report listing)
"""

from .errors import (
    ProvisioningError,
    ValidationError,
    ConnectivityError,
    ExternalToolError,
    DataDependencyError,
    redact,
    safe_message,
)

from .event_logger import LogSink, Severity, read_log

from .process import ProcessLauncher, ProcessResult

from .sql_client import Credentials, SqlClient

__all__ = [
    # Errors
    "ProvisioningError",
    "ValidationError",
    "ConnectivityError",
    "ExternalToolError",
    "DataDependencyError",
    "redact",
    "safe_message",
    # Event logging
    "LogSink",
    "Severity",
    "read_log",
    # External programs
    "ProcessLauncher",
    "ProcessResult",
    # SQL
    "Credentials",
    "SqlClient",
]
