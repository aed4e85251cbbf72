"""Shared pytest fixtures for SMG provisioning tests."""
import os
import sys
from types import SimpleNamespace

import pytest

# Add project root to path
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _PROJECT_ROOT)

from core.event_logger import LogSink
from core.process import ProcessResult
from core.provisioning.credentials import InMemoryKeyValueStore
from core.provisioning.executor import Collaborators, ProvisioningSequencer
from core.provisioning.models import CONFIG_DUMPS, ProvisioningConfig
from core.sql_client import Credentials

CUSTOMER = "ACME"
TARGET = "dbhost:1521/SMG"

SYSDBA_TEMPLATE_TEXT = """\
PROMPT Creating SMG tablespaces
ACCEPT owner_password CHAR PROMPT 'Owner password: ' HIDE
CREATE TABLESPACE smg_data DATAFILE SIZE 100M AUTOEXTEND ON;
CREATE USER &owner_user IDENTIFIED BY "&owner_password" DEFAULT TABLESPACE smg_data;
PAUSE Press enter to continue
"""

OWNER_TEMPLATE_TEXT = """\
PROMPT Creating SMG schema objects for &customer
CREATE TABLE smg_config_params (name VARCHAR2(64) PRIMARY KEY, value VARCHAR2(4000));
CREATE TABLE smg_reader_identity (username VARCHAR2(128) PRIMARY KEY, server_name VARCHAR2(256));
"""

UPGRADE_LOG_OK = """\
Starting upgrade to 10.4.2
Applying patch 10.4.1 ... done
Applying patch 10.4.2 ... done
Upgrade completed successfully
"""


# =============================================================================
# Fake collaborators
# =============================================================================

class FakeSqlClient:
    """
    SQL client double.

    ``failures`` maps a substring of the statement text to the exception to
    raise; ``responses`` maps a substring to the rows to return.
    """

    def __init__(self):
        self.calls = []
        self.ping_calls = 0
        self.ping_error = None
        self.failures = {}
        self.responses = {"DBTIMEZONE": [("+01:00",)]}

    def _check(self, text):
        for needle, exc in self.failures.items():
            if needle in text:
                raise exc

    def ping(self, target, credentials):
        self.ping_calls += 1
        if self.ping_error is not None:
            raise self.ping_error

    def execute(self, target, credentials, statement, params=None):
        text = str(statement)
        self.calls.append(SimpleNamespace(
            method="execute", user=credentials.username, text=text, params=params,
        ))
        self._check(text)
        for needle, rows in self.responses.items():
            if needle in text:
                return rows
        return []

    def execute_batch(self, target, credentials, statements):
        texts = [s if isinstance(s, str) else s[0] for s in statements]
        text = "\n".join(texts)
        self.calls.append(SimpleNamespace(
            method="execute_batch", user=credentials.username, text=text,
            params=[None if isinstance(s, str) else s[1] for s in statements],
        ))
        self._check(text)
        return len(statements)

    @property
    def execution_count(self):
        return len(self.calls)

    def statements_containing(self, needle):
        return [c for c in self.calls if needle in c.text]


class FakeLauncher:
    """Process launcher double; ``exit_codes`` maps command-line substrings to exit codes."""

    def __init__(self):
        self.calls = []
        self.exit_codes = {}
        self.errors = {}

    def run(self, command, args=None, elevated=False, wait=True, timeout=None,
            input_text=None, env=None, cwd=None):
        args = [str(a) for a in (args or [])]
        line = " ".join([command, *args])
        self.calls.append(SimpleNamespace(
            command=command, args=args, elevated=elevated, timeout=timeout,
            input_text=input_text, env=env, line=line,
        ))
        for needle, exc in self.errors.items():
            if needle in line:
                raise exc
        code = 0
        for needle, exit_code in self.exit_codes.items():
            if needle in line:
                code = exit_code
        return ProcessResult(
            command=command, args=args, exit_code=code,
            stderr="simulated failure" if code else "",
        )

    def lines(self):
        return [c.line for c in self.calls]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings(monkeypatch):
    """Settings built from defaults only."""
    for key in list(os.environ):
        if key.startswith("SMG_"):
            monkeypatch.delenv(key, raising=False)
    from config.settings import AppSettings
    return AppSettings()


@pytest.fixture
def install_tree(tmp_path):
    """Install root with templates and the customer dump set, plus a work root."""
    install_root = tmp_path / "install"
    templates = install_root / "templates"
    dumps = install_root / "dumps" / CUSTOMER
    templates.mkdir(parents=True)
    dumps.mkdir(parents=True)

    (templates / "create_sysdba.sql").write_text(SYSDBA_TEMPLATE_TEXT)
    (templates / "create_owner.sql").write_text(OWNER_TEMPLATE_TEXT)
    (templates / "domain_model_init.sql").write_text("BEGIN smg_domain.init; END;\n/\n")
    for name in CONFIG_DUMPS:
        (dumps / f"{name}.dmp").write_bytes(b"EXPORT:V11.02.00\n")

    work_root = tmp_path / "work"
    log_dir = work_root / "logs"
    log_dir.mkdir(parents=True)
    (log_dir / "upgrade_20260101T000000.log").write_text(UPGRADE_LOG_OK)

    return SimpleNamespace(install_root=install_root, work_root=work_root, log_dir=log_dir)


def build_config(install_tree, **overrides):
    values = dict(
        customer=CUSTOMER,
        schema_version="10.4.2",
        target=TARGET,
        owner=Credentials("SMG", "owner-pw"),
        sysdba=Credentials("SYS", "sys-pw", sysdba=True),
        system=Credentials("SYSTEM", "system-pw"),
        install_root=install_tree.install_root,
        work_root=install_tree.work_root,
    )
    values.update(overrides)
    return ProvisioningConfig(**values)


@pytest.fixture
def config(install_tree):
    """A valid provisioning config for the ACME customer."""
    return build_config(install_tree)


@pytest.fixture
def make_config(install_tree):
    """Build a config with selected fields overridden."""
    def _make(**overrides):
        return build_config(install_tree, **overrides)
    return _make


@pytest.fixture
def fake_sql():
    return FakeSqlClient()


@pytest.fixture
def fake_launcher():
    return FakeLauncher()


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def collaborators(fake_sql, fake_launcher, store):
    return Collaborators(sql=fake_sql, launcher=fake_launcher, store=store, sink=LogSink())


@pytest.fixture
def sequencer(collaborators, settings, tmp_path):
    """Sequencer over the real step table with fake collaborators."""
    return ProvisioningSequencer(collaborators, settings, report_dir=tmp_path / "reports")
