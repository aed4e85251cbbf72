"""Upgrade log inspection."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence


@dataclass
class LogScan:
    """Result of scanning one log file"""
    path: Path
    success_marker_found: bool = False
    # marker -> first line number (1-based) where it appears
    errors: Dict[str, int] = field(default_factory=dict)

    @property
    def clean(self) -> bool:
        return self.success_marker_found and not self.errors


def find_latest_log(directory: Path, pattern: str) -> Optional[Path]:
    """Most recently modified file in ``directory`` matching ``pattern``."""
    directory = Path(directory)
    if not directory.is_dir():
        return None
    candidates = [p for p in directory.glob(pattern) if p.is_file()]
    if not candidates:
        return None
    return max(candidates, key=lambda p: (p.stat().st_mtime, p.name))


def scan_log(path: Path, error_markers: Sequence[str], success_marker: str) -> LogScan:
    """Scan a log for error markers and the success marker."""
    scan = LogScan(path=Path(path))
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for lineno, line in enumerate(f, start=1):
            if success_marker and success_marker in line:
                scan.success_marker_found = True
            for marker in error_markers:
                if marker in line and marker not in scan.errors:
                    scan.errors[marker] = lineno
    return scan
