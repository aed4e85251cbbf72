"""
SQL execution client for the SMG Oracle schema.

Ad-hoc statements run through python-oracledb; full script files run through
SQL*Plus via the process launcher so that script-level directives (DEFINE,
WHENEVER, @includes) behave exactly as they do interactively.

Every connection is opened for a single call and closed on every exit path.
``execute_batch`` is the one place a connection spans several statements,
and it owns that connection for the duration of the call only.

Usage:
    from core.sql_client import Credentials, SqlClient

    sql = SqlClient(launcher)
    sys_creds = Credentials("sys", "secret", sysdba=True)

    sql.ping("dbhost:1521/SMG", sys_creds)
    rows = sql.execute("dbhost:1521/SMG", sys_creds, "SELECT DBTIMEZONE FROM DUAL")
    sql.execute("dbhost:1521/SMG", sys_creds, Path("work/scripts/create_sysdba.sql"))
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

import oracledb
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.errors import ConnectivityError, ExternalToolError, redact
from core.process import ProcessLauncher

logger = logging.getLogger(__name__)

Statement = Union[str, Path]


@dataclass(frozen=True)
class Credentials:
    """Database login. The password never appears in repr()."""

    username: str
    password: str = field(repr=False)
    sysdba: bool = False

    def connect_string(self, target: str) -> str:
        """SQL*Plus CONNECT argument (only ever written to stdin)."""
        suffix = " AS SYSDBA" if self.sysdba else ""
        return f'{self.username}/"{self.password}"@{target}{suffix}'

    def __str__(self) -> str:
        return f"{self.username}{' (sysdba)' if self.sysdba else ''}"


class SqlClient:
    """
    Executes statements and scripts against an Oracle target.

    Args:
        launcher: ProcessLauncher used for SQL*Plus script runs
        sqlplus_path: SQL*Plus executable
        connect_timeout: Seconds allowed for establishing a connection
        query_timeout: Seconds allowed for a single statement round-trip
        script_timeout: Seconds allowed for a whole script run
        connect_attempts: Attempts made by ping() before giving up
        retry_wait: Base backoff in seconds between ping attempts
    """

    def __init__(
        self,
        launcher: ProcessLauncher,
        sqlplus_path: str = "sqlplus",
        connect_timeout: int = 30,
        query_timeout: int = 300,
        script_timeout: int = 3600,
        connect_attempts: int = 3,
        retry_wait: float = 1.0,
    ):
        self.launcher = launcher
        self.sqlplus_path = sqlplus_path
        self.connect_timeout = connect_timeout
        self.query_timeout = query_timeout
        self.script_timeout = script_timeout
        self.connect_attempts = connect_attempts
        self.retry_wait = retry_wait

    @classmethod
    def from_settings(cls, settings, launcher: ProcessLauncher) -> "SqlClient":
        return cls(
            launcher,
            sqlplus_path=settings.tools.sqlplus_path,
            connect_timeout=settings.timeouts.connect,
            query_timeout=settings.timeouts.query,
            script_timeout=settings.timeouts.process,
            connect_attempts=settings.timeouts.connect_attempts,
        )

    # =========================================================================
    # Connections
    # =========================================================================

    def _connect(self, target: str, credentials: Credentials):
        """Open a connection with connect and call timeouts applied."""
        kwargs = {
            "user": credentials.username,
            "password": credentials.password,
            "dsn": target,
            "tcp_connect_timeout": float(self.connect_timeout),
        }
        if credentials.sysdba:
            kwargs["mode"] = oracledb.AUTH_MODE_SYSDBA
        try:
            conn = oracledb.connect(**kwargs)
        except oracledb.Error as e:
            raise ConnectivityError(
                f"Cannot connect to {target} as {credentials}: {redact(str(e))}"
            ) from e
        conn.call_timeout = self.query_timeout * 1000
        return conn

    def ping(self, target: str, credentials: Credentials) -> None:
        """
        Verify the target accepts logins.

        Retries transient failures with exponential backoff, bounded by
        ``connect_attempts``.

        Raises:
            ConnectivityError: If every attempt fails
        """
        for attempt in Retrying(
            stop=stop_after_attempt(self.connect_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, min=self.retry_wait, max=8 * self.retry_wait),
            retry=retry_if_exception_type(ConnectivityError),
            reraise=True,
        ):
            with attempt:
                conn = self._connect(target, credentials)
                try:
                    conn.ping()
                except oracledb.Error as e:
                    raise ConnectivityError(
                        f"Ping to {target} failed: {redact(str(e))}"
                    ) from e
                finally:
                    conn.close()
        logger.info(f"Connectivity to {target} as {credentials} verified")

    # =========================================================================
    # Execution
    # =========================================================================

    def execute(
        self,
        target: str,
        credentials: Credentials,
        statement: Statement,
        params: Optional[Mapping[str, Any]] = None,
    ) -> List[Tuple]:
        """
        Run an ad-hoc statement or a script file.

        A ``Path`` is executed as a script through SQL*Plus (no rows are
        returned); a string is executed as a single statement.

        Returns:
            Fetched rows for queries, otherwise an empty list
        """
        if isinstance(statement, Path):
            self.run_script(target, credentials, statement)
            return []
        return self.query(target, credentials, statement, params)

    def query(
        self,
        target: str,
        credentials: Credentials,
        statement: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> List[Tuple]:
        """Execute one statement on its own connection and commit."""
        with self._connect(target, credentials) as conn:
            with conn.cursor() as cursor:
                try:
                    cursor.execute(statement, params or {})
                    rows = cursor.fetchall() if cursor.description else []
                except oracledb.Error as e:
                    raise ExternalToolError(
                        f"Statement failed: {redact(str(e))}",
                        command=_summarize(statement),
                    ) from e
            conn.commit()
        return rows

    def execute_batch(
        self,
        target: str,
        credentials: Credentials,
        statements: Sequence[Union[str, Tuple[str, Mapping[str, Any]]]],
    ) -> int:
        """
        Execute several statements on one connection, committing once.

        Items are plain SQL strings or ``(sql, params)`` pairs. The first
        failure rolls back and raises.

        Returns:
            Number of statements executed
        """
        count = 0
        with self._connect(target, credentials) as conn:
            with conn.cursor() as cursor:
                for item in statements:
                    sql, params = (item, {}) if isinstance(item, str) else item
                    try:
                        cursor.execute(sql, params)
                    except oracledb.Error as e:
                        conn.rollback()
                        raise ExternalToolError(
                            f"Statement {count + 1} of {len(statements)} failed: {redact(str(e))}",
                            command=_summarize(sql),
                        ) from e
                    count += 1
            conn.commit()
        return count

    def run_script(self, target: str, credentials: Credentials, script: Path) -> None:
        """
        Run a script file through SQL*Plus.

        Credentials are written to stdin; the script aborts with a non-zero
        exit code on the first SQL or OS error.

        Raises:
            ExternalToolError: On non-zero exit or timeout
        """
        script = Path(script)
        if not script.exists():
            raise ExternalToolError(f"Script not found: {script}", command=str(script))

        session = "\n".join([
            "WHENEVER SQLERROR EXIT SQL.SQLCODE",
            "WHENEVER OSERROR EXIT FAILURE",
            f"CONNECT {credentials.connect_string(target)}",
            f'@"{script}"',
            "EXIT",
            "",
        ])
        logger.info(f"Running script {script.name} on {target} as {credentials}")
        result = self.launcher.run(
            self.sqlplus_path,
            ["-L", "-S", "/nolog"],
            input_text=session,
            timeout=self.script_timeout,
            cwd=script.parent,
        )
        result.check()


def _summarize(statement: str, limit: int = 80) -> str:
    """First line of a statement, redacted, for error context."""
    first = statement.strip().splitlines()[0] if statement.strip() else ""
    first = redact(first)
    return first if len(first) <= limit else first[:limit] + "..."
