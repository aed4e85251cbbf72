"""
Centralized error handling for SMG provisioning.

Error Hierarchy:
- ProvisioningError: base for every expected failure raised by a step
  - ValidationError: bad or missing input (always fatal, pre-execution)
  - ConnectivityError: database or service unreachable
  - ExternalToolError: non-zero exit, timeout or failed statement
  - DataDependencyError: precondition invalidated by an earlier failure

Whether a ConnectivityError or ExternalToolError aborts the run is decided by
the failing step's policy, not by the exception type.

Usage:
    from core.errors import ExternalToolError, safe_message

    if result.exit_code != 0:
        raise ExternalToolError("import failed", command=cmd, exit_code=result.exit_code)

    except Exception as e:
        incident_message = safe_message(e)
"""

import re
from typing import Optional, Sequence


# =============================================================================
# Exception Classes
# =============================================================================

class ProvisioningError(Exception):
    """
    Base class for expected provisioning failures.
    Messages are safe to show to operators (no credentials).
    """

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.step = step


class ValidationError(ProvisioningError):
    """Input validation failed."""

    def __init__(self, message: str, violations: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.violations = list(violations or [message])


class ConnectivityError(ProvisioningError):
    """Database or service could not be reached."""


class ExternalToolError(ProvisioningError):
    """An external program or statement failed."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        exit_code: Optional[int] = None,
        output: str = "",
    ):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.output = output


class DataDependencyError(ProvisioningError):
    """An earlier recoverable failure invalidated this step's precondition."""

    def __init__(self, message: str, depends_on: Optional[str] = None):
        super().__init__(message)
        self.depends_on = depends_on


# =============================================================================
# Safe Message Helper
# =============================================================================

_REDACTIONS = [
    (re.compile(r"\b(password|passwd|pwd)\s*[=:]\s*\S+", re.IGNORECASE), r"\1=***"),
    (re.compile(r"(identified\s+by\s+)(\"[^\"]*\"|\S+)", re.IGNORECASE), r"\1***"),
    # user/password@target connect strings
    (re.compile(r"\b([\w$#]+)/[^\s@/]+@"), r"\1/***@"),
]


def redact(text: str) -> str:
    """Remove credentials from free text."""
    if not text:
        return text
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def safe_message(e: BaseException) -> str:
    """
    Single-line, redacted description of an exception for Incidents.

    Expected errors keep their message; anything else is prefixed with the
    exception type so unexpected failures are recognisable in the report.
    """
    message = str(e).strip() or e.__class__.__name__
    if not isinstance(e, ProvisioningError):
        message = f"{e.__class__.__name__}: {message}"
    first_line = message.splitlines()[0] if message else message
    return redact(first_line)
