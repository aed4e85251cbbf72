"""
Structured log sink for provisioning runs.

Appends one JSON record per line to an event log file and mirrors each record
to Python logging. The sequencer flushes its incidents here at the end of a
run.

Usage:
    from core.event_logger import LogSink, Severity

    sink = LogSink(Path("data/event_log.jsonl"))
    sink.append("Schema created", Severity.INFO, "Schema")

    # Everything appended by this process
    records = sink.records()
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional

from core.errors import redact
from core.timestamps import isonow

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 10240


class Severity(Enum):
    """Log record severity."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def log_level(self) -> int:
        return {
            Severity.INFO: logging.INFO,
            Severity.WARNING: logging.WARNING,
            Severity.ERROR: logging.ERROR,
        }[self]


class LogSink:
    """
    Append-only structured log writer.

    Records are never rewritten: each append opens the file in append mode,
    writes a single line and closes it again. ``log_file=None`` keeps records
    in memory only.
    """

    def __init__(self, log_file: Optional[Path] = None):
        self._log_file = Path(log_file) if log_file else None
        self._records: List[dict] = []

    @property
    def log_file(self) -> Optional[Path]:
        return self._log_file

    def append(
        self,
        message: str,
        severity: Severity = Severity.INFO,
        source: str = "smg",
    ) -> dict:
        """
        Append a structured record.

        Args:
            message: Free text; credentials are redacted
            severity: Record severity
            source: Tag of the component or step that produced the record

        Returns:
            The record that was written
        """
        text = message if len(message) <= MAX_MESSAGE_LENGTH else message[:MAX_MESSAGE_LENGTH]
        record = {
            "timestamp": isonow(),
            "severity": severity.value,
            "source": source,
            "message": redact(text),
        }
        self._records.append(record)

        if self._log_file is not None:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")

        logger.log(
            severity.log_level,
            f"[{source}] {record['message']}",
            extra={"severity": severity.value, "source": source},
        )
        return record

    def records(self, source: Optional[str] = None) -> List[dict]:
        """Records appended by this sink instance, oldest first."""
        if source is None:
            return list(self._records)
        return [r for r in self._records if r["source"] == source]


def read_log(log_file: Path, limit: int = 50) -> List[dict]:
    """
    Read the most recent records from an event log file.

    Lines that are not valid JSON are skipped.
    """
    if not log_file.exists():
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug(f"Skipping malformed event log line in {log_file}")
    return records[-limit:]
