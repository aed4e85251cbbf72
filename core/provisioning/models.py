"""
Provisioning input model.

ProvisioningConfig is immutable and is threaded explicitly through every
step; nothing is read from ambient process state.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, Optional

from core.sql_client import Credentials

VERSION_PATTERN = re.compile(r"^\d+(\.\d+){1,3}$")
TIMEZONE_PATTERN = re.compile(r"^[+-]\d{2}:\d{2}$")
LOCALE_PATTERN = re.compile(r"^[a-z]{2}_[A-Z]{2}$")
LANGUAGE_PATTERN = re.compile(r"^[a-z]{2}$")
CUSTOMER_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

# Configuration dump set, in referential import order
CONFIG_DUMPS = ("params", "group", "group_params", "group_member", "group_members")

SYSDBA_TEMPLATE = "create_sysdba.sql"
OWNER_TEMPLATE = "create_owner.sql"
DOMAIN_MODEL_SCRIPT = "domain_model_init.sql"


@dataclass(frozen=True)
class ProvisioningConfig:
    """
    Immutable input for one provisioning run.

    Attributes:
        customer: Customer name; selects the configuration dump set
        schema_version: Target SMG schema version (e.g. "10.4.2")
        target: Oracle connect descriptor (e.g. "dbhost:1521/SMG")
        owner: Schema owner credentials
        sysdba: SYS credentials (connect AS SYSDBA)
        system: SYSTEM credentials (reader account administration)
        install_root: Directory holding templates/ and dumps/<customer>/
        work_root: Directory for generated scripts and tool logs
        language: Two-letter UI language
        locale: Locale such as en_GB
        timezone: Expected database timezone offset (+HH:MM)
        nms_data_dir: Non-managed storage directory for data files
        nms_index_dir: Non-managed storage directory for index files
        parameters: Extra customer parameter overrides
    """

    customer: str
    schema_version: str
    target: str
    owner: Credentials
    sysdba: Credentials
    system: Credentials
    install_root: Path
    work_root: Path
    language: str = "en"
    locale: str = "en_GB"
    timezone: str = "+01:00"
    nms_data_dir: Optional[Path] = None
    nms_index_dir: Optional[Path] = None
    parameters: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze the overrides so the config stays immutable end to end
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    # =========================================================================
    # Derived paths
    # =========================================================================

    @property
    def template_dir(self) -> Path:
        return Path(self.install_root) / "templates"

    @property
    def dump_dir(self) -> Path:
        return Path(self.install_root) / "dumps" / self.customer

    @property
    def scripts_dir(self) -> Path:
        return Path(self.work_root) / "scripts"

    @property
    def log_dir(self) -> Path:
        return Path(self.work_root) / "logs"

    @property
    def uses_nms(self) -> bool:
        """True when tablespaces go to non-managed storage directories."""
        return self.nms_data_dir is not None and self.nms_index_dir is not None

    def required_artifacts(self) -> List[Path]:
        """Files that must exist before anything is changed."""
        paths = [
            self.template_dir / SYSDBA_TEMPLATE,
            self.template_dir / OWNER_TEMPLATE,
            self.template_dir / DOMAIN_MODEL_SCRIPT,
        ]
        paths.extend(self.dump_dir / f"{name}.dmp" for name in CONFIG_DUMPS)
        return paths

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> List[str]:
        """
        Check every input precondition.

        Returns:
            Violated preconditions, empty when the config is usable
        """
        errors: List[str] = []

        for name in ("customer", "schema_version", "target"):
            if not str(getattr(self, name) or "").strip():
                errors.append(f"{name} must not be empty")

        for role in ("owner", "sysdba", "system"):
            creds = getattr(self, role)
            if not creds.username.strip():
                errors.append(f"{role} username must not be empty")
            if not creds.password:
                errors.append(f"{role} password must not be empty")
        if not self.sysdba.sysdba:
            errors.append("sysdba credentials must connect AS SYSDBA")

        if self.customer and not CUSTOMER_PATTERN.match(self.customer):
            errors.append(f"customer {self.customer!r} must be alphanumeric and start with a letter")
        if self.schema_version and not VERSION_PATTERN.match(self.schema_version):
            errors.append(f"schema_version {self.schema_version!r} must look like 10.4 or 10.4.2")
        if not TIMEZONE_PATTERN.match(self.timezone or ""):
            errors.append(f"timezone {self.timezone!r} must look like +01:00")
        if not LOCALE_PATTERN.match(self.locale or ""):
            errors.append(f"locale {self.locale!r} must look like en_GB")
        if not LANGUAGE_PATTERN.match(self.language or ""):
            errors.append(f"language {self.language!r} must be a two-letter code")

        if not Path(self.install_root).is_dir():
            errors.append(f"install_root {self.install_root} does not exist")
        if not str(self.work_root or "").strip():
            errors.append("work_root must not be empty")

        if (self.nms_data_dir is None) != (self.nms_index_dir is None):
            errors.append("nms_data_dir and nms_index_dir must be set together or not at all")
        else:
            for name in ("nms_data_dir", "nms_index_dir"):
                value = getattr(self, name)
                if value is not None and not Path(value).is_dir():
                    errors.append(f"{name} {value} does not exist")

        for key in self.parameters:
            if not key.strip():
                errors.append("parameter override names must not be empty")
                break

        return errors
