"""
SMG database provisioning step table.

The table is data: order, policy, taint flags and dependencies are declared
here and nowhere else. Statement text and tool arguments are configuration
for the external programs; the sequencer never inspects them.

Order matters. The schema must exist before the timezone check and the
upgrades, the upgrade must run before configuration import, and the
imported configuration must exist before parameter overrides.
"""

import logging
import re

from core.errors import DataDependencyError, ProvisioningError, safe_message
from core.provisioning.credentials import ensure_reader_credentials
from core.provisioning.executor import Step, StepContext, SubStep
from core.provisioning.log_verification import find_latest_log, scan_log
from core.provisioning.models import CONFIG_DUMPS, DOMAIN_MODEL_SCRIPT
from core.provisioning.state import StepPolicy
from core.provisioning.templates import (
    SCRIPT_ARTIFACT_PREFIX,
    generate_scripts,
    remove_generated_scripts,
)
from core.timestamps import same_offset

logger = logging.getLogger(__name__)

CONFIG_DIRTY = "config-dirty"
READER_CREDENTIALS = "reader-credentials"

IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_$#]{0,127}$")

# Reverse referential order: members before groups before parameters
PURGE_STATEMENTS = (
    "DELETE FROM smg_config_group_members",
    "DELETE FROM smg_config_group_member",
    "DELETE FROM smg_config_group_params",
    "DELETE FROM smg_config_group",
    "DELETE FROM smg_config_params",
)

PARAMETER_MERGE = """
MERGE INTO smg_config_params p
USING (SELECT :name AS name, :value AS value FROM dual) s
ON (p.name = s.name)
WHEN MATCHED THEN UPDATE SET p.value = s.value
WHEN NOT MATCHED THEN INSERT (name, value) VALUES (s.name, s.value)
"""

READER_GRANTS = """
DECLARE
  n NUMBER;
BEGIN
  SELECT COUNT(*) INTO n FROM dba_users WHERE username = UPPER(:reader);
  IF n = 0 THEN
    EXECUTE IMMEDIATE 'CREATE USER ' || :reader || ' IDENTIFIED BY "' || :password || '"';
  ELSE
    EXECUTE IMMEDIATE 'ALTER USER ' || :reader || ' IDENTIFIED BY "' || :password || '"';
  END IF;
  EXECUTE IMMEDIATE 'GRANT CREATE SESSION TO ' || :reader;
  FOR t IN (SELECT table_name FROM dba_tables WHERE owner = UPPER(:owner)) LOOP
    EXECUTE IMMEDIATE 'GRANT SELECT ON ' || :owner || '."' || t.table_name || '" TO ' || :reader;
  END LOOP;
END;
"""

READER_IDENTITY_MERGE = """
MERGE INTO smg_reader_identity r
USING (SELECT UPPER(:reader) AS username, :server AS server_name FROM dual) s
ON (r.username = s.username)
WHEN MATCHED THEN UPDATE SET r.server_name = s.server_name
WHEN NOT MATCHED THEN INSERT (username, server_name) VALUES (s.username, s.server_name)
"""

ACCESS_TRIGGER = """
CREATE OR REPLACE TRIGGER {reader}_logon
AFTER LOGON ON {reader}.SCHEMA
BEGIN
  EXECUTE IMMEDIATE 'ALTER SESSION SET CURRENT_SCHEMA = {owner}';
END;
"""


def _identifier(value: str, what: str) -> str:
    if not IDENTIFIER.match(value or ""):
        raise ProvisioningError(f"{what} {value!r} is not a valid Oracle identifier")
    return value.upper()


# =============================================================================
# Preconditions
# =============================================================================

def verify_connectivity(ctx: StepContext) -> None:
    ctx.sql.ping(ctx.config.target, ctx.config.sysdba)


def verify_artifacts(ctx: StepContext) -> None:
    missing = [str(p) for p in ctx.config.required_artifacts() if not p.is_file()]
    if missing:
        raise ProvisioningError(f"Missing required files: {', '.join(missing)}")


def create_directories(ctx: StepContext) -> None:
    for directory in (ctx.config.scripts_dir, ctx.config.log_dir):
        directory.mkdir(parents=True, exist_ok=True)


# =============================================================================
# Schema creation
# =============================================================================

def generate_parameterized_scripts(ctx: StepContext) -> None:
    scripts = generate_scripts(ctx.config)
    ctx.state.artifacts.update(
        {f"{SCRIPT_ARTIFACT_PREFIX}{role}": path for role, path in scripts.items()}
    )


def execute_schema_scripts(ctx: StepContext) -> None:
    config = ctx.config
    try:
        sysdba_script = ctx.state.artifacts[f"{SCRIPT_ARTIFACT_PREFIX}sysdba"]
        owner_script = ctx.state.artifacts[f"{SCRIPT_ARTIFACT_PREFIX}owner"]
    except KeyError as e:
        raise DataDependencyError(f"Generated script {e} is missing") from e

    ctx.sql.execute(config.target, config.sysdba, sysdba_script)
    ctx.sql.execute(config.target, config.owner, owner_script)


def delete_generated_scripts(ctx: StepContext) -> None:
    """Generated scripts contain passwords; remove every one of them."""
    for path, e in remove_generated_scripts(ctx.state.artifacts):
        ctx.record(f"Could not delete {path.name}: {e.strerror or e}")


# =============================================================================
# Timezone
# =============================================================================

def correct_timezone(ctx: StepContext) -> None:
    """
    Compare DBTIMEZONE with the expected offset and correct it.

    A correction only takes effect after the database service restarts.
    Each failing part is recorded separately; a failed correction skips
    the restart.
    """
    config = ctx.config
    tools = ctx.settings.tools
    expected = config.timezone

    rows = ctx.sql.execute(config.target, config.sysdba, "SELECT DBTIMEZONE FROM DUAL")
    current = str(rows[0][0]).strip() if rows and rows[0] else ""

    try:
        matches = bool(current) and same_offset(current, expected)
    except ValueError:
        matches = False
    if matches:
        logger.info(f"{ctx.log_prefix} Database timezone {current} is correct")
        return

    logger.warning(f"{ctx.log_prefix} Database timezone is {current or 'unknown'}, expected {expected}")

    try:
        ctx.sql.execute(
            config.target, config.sysdba, f"ALTER DATABASE SET TIME_ZONE = '{expected}'"
        )
    except Exception as e:
        ctx.record(f"Could not change database timezone from {current or 'unknown'} to {expected}: {safe_message(e)}")
        return

    timeout = ctx.settings.timeouts.service_restart
    for action in ("stop", "start"):
        try:
            ctx.run_tool(
                tools.service_control,
                [action, tools.oracle_service],
                elevated=True,
                timeout=timeout,
            )
        except Exception as e:
            ctx.record(f"Could not {action} service {tools.oracle_service}: {safe_message(e)}")


# =============================================================================
# Upgrade and configuration
# =============================================================================

def _run_upgrade(ctx: StepContext, pass_number: int) -> None:
    config = ctx.config
    ctx.run_tool(
        ctx.settings.tools.upgrade_tool,
        [
            "/target", config.target,
            "/user", config.owner.username,
            "/version", config.schema_version,
            "/pass", str(pass_number),
            "/log", str(config.log_dir),
        ],
        env={"SMG_UPGRADE_PASSWORD": config.owner.password},
        cwd=config.work_root,
    )


def upgrade_pass_one(ctx: StepContext) -> None:
    _run_upgrade(ctx, 1)


def upgrade_pass_two(ctx: StepContext) -> None:
    _run_upgrade(ctx, 2)


def purge_default_configuration(ctx: StepContext) -> None:
    config = ctx.config
    ctx.sql.execute_batch(config.target, config.owner, list(PURGE_STATEMENTS))


def import_customer_configuration(ctx: StepContext) -> None:
    """Import the dump set in referential order; the first failure stops."""
    config = ctx.config
    login = f"{config.owner.username}/{config.owner.password}@{config.target}\n"
    for name in CONFIG_DUMPS:
        dump = config.dump_dir / f"{name}.dmp"
        logger.info(f"{ctx.log_prefix} Importing {dump.name}")
        ctx.run_tool(
            ctx.settings.tools.import_utility,
            [
                f"file={dump}",
                f"log={config.log_dir / f'import_{name}.log'}",
                "full=y",
                "ignore=y",
                "commit=y",
            ],
            input_text=login,
            cwd=config.work_root,
        )


def apply_parameter_overrides(ctx: StepContext) -> None:
    config = ctx.config
    values = {
        "CUSTOMER": config.customer,
        "LANGUAGE": config.language,
        "LOCALE": config.locale,
        "TIMEZONE": config.timezone,
    }
    values.update(config.parameters)
    statements = [
        (PARAMETER_MERGE, {"name": name, "value": values[name]})
        for name in sorted(values)
    ]
    ctx.sql.execute_batch(config.target, config.owner, statements)


def load_domain_model(ctx: StepContext) -> None:
    config = ctx.config
    ctx.sql.execute(config.target, config.owner, config.template_dir / DOMAIN_MODEL_SCRIPT)


# =============================================================================
# Reader account
# =============================================================================

def provision_reader_credentials(ctx: StepContext) -> None:
    config = ctx.config
    ctx.state.reader_credentials = ensure_reader_credentials(
        ctx.store,
        default_username=f"{config.customer}_READER".upper(),
        default_server=config.target,
    )


def _reader(ctx: StepContext):
    reader = ctx.state.reader_credentials
    if reader is None:
        raise DataDependencyError("Reader credentials are not available", depends_on=READER_CREDENTIALS)
    return reader


def grant_reader_privileges(ctx: StepContext) -> None:
    config = ctx.config
    reader = _reader(ctx)
    if '"' in reader.password:
        raise ProvisioningError("Reader password must not contain double quotes")
    ctx.sql.execute(
        config.target,
        config.system,
        READER_GRANTS,
        {
            "reader": _identifier(reader.username, "Reader username"),
            "password": reader.password,
            "owner": _identifier(config.owner.username, "Schema owner"),
        },
    )


def link_reader_identity(ctx: StepContext) -> None:
    config = ctx.config
    reader = _reader(ctx)
    ctx.sql.execute(
        config.target,
        config.owner,
        READER_IDENTITY_MERGE,
        {"reader": reader.username, "server": reader.server_name},
    )


def install_access_trigger(ctx: StepContext) -> None:
    config = ctx.config
    reader = _reader(ctx)
    ddl = ACCESS_TRIGGER.format(
        reader=_identifier(reader.username, "Reader username"),
        owner=_identifier(config.owner.username, "Schema owner"),
    )
    ctx.sql.execute(config.target, config.system, ddl)


# =============================================================================
# Log verification
# =============================================================================

def verify_upgrade_logs(ctx: StepContext) -> None:
    """Check the newest upgrade log for error markers and the success marker."""
    paths = ctx.settings.paths
    log = find_latest_log(ctx.config.log_dir, paths.upgrade_log_pattern)
    if log is None:
        raise ProvisioningError(
            f"No upgrade log matching {paths.upgrade_log_pattern} in {ctx.config.log_dir}"
        )

    scan = scan_log(log, paths.upgrade_error_markers, paths.upgrade_success_marker)
    for marker, lineno in scan.errors.items():
        ctx.record(f"{log.name} line {lineno}: found '{marker}'")
    if not scan.success_marker_found:
        ctx.record(f"{log.name}: '{paths.upgrade_success_marker}' not found")
    if scan.clean:
        logger.info(f"{ctx.log_prefix} {log.name} reports a successful upgrade")


# =============================================================================
# Step table
# =============================================================================

FATAL = StepPolicy.FATAL
RECOVERABLE = StepPolicy.RECOVERABLE

STEP_TABLE = (
    Step("Verify prerequisite connectivity", "Connectivity", FATAL, verify_connectivity),
    Step("Verify prerequisite artifacts", "Artifacts", FATAL, verify_artifacts),
    Step("Create working directories", "Directories", FATAL, create_directories),
    Step("Generate parameterized scripts", "Templates", FATAL, generate_parameterized_scripts),
    Step("Execute schema-owner and sysdba scripts", "Schema", FATAL, execute_schema_scripts),
    Step("Delete generated scripts", "Cleanup", RECOVERABLE, delete_generated_scripts),
    Step("Correct database timezone", "Timezone", RECOVERABLE, correct_timezone),
    Step("Run schema upgrade (pass 1)", "Upgrade", FATAL, upgrade_pass_one),
    Step("Purge default configuration", "ConfigPurge", RECOVERABLE, purge_default_configuration,
         taints=frozenset({CONFIG_DIRTY})),
    Step("Import customer configuration", "ConfigImport", FATAL, import_customer_configuration),
    Step("Apply customer parameter overrides", "Parameters", RECOVERABLE, apply_parameter_overrides,
         taints=frozenset({CONFIG_DIRTY})),
    Step("Load domain model initialization", "DomainModel", RECOVERABLE, load_domain_model),
    Step("Run schema upgrade (pass 2)", "Upgrade2", RECOVERABLE, upgrade_pass_two),
    Step("Ensure reader credentials", "ReaderCredentials", RECOVERABLE, provision_reader_credentials,
         taints=frozenset({READER_CREDENTIALS})),
    Step(
        "Configure reader access",
        "ReaderAccess",
        RECOVERABLE,
        substeps=(
            SubStep("Grant reader privileges", grant_reader_privileges),
            SubStep("Link reader identity", link_reader_identity),
            SubStep("Install access trigger", install_access_trigger),
        ),
        requires=frozenset({READER_CREDENTIALS}),
    ),
    Step("Verify upgrade logs", "UpgradeLogs", RECOVERABLE, verify_upgrade_logs),
)


def step_names():
    """Step names in execution order."""
    return [step.name for step in STEP_TABLE]
