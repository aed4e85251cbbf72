"""
Group Policy report parsing.

Reads GPO XML reports (as exported by Get-GPOReport -ReportType Xml) and
extracts which policy is linked where. Element namespaces differ between
exporter versions, so matching is done on local names only.

Usage:
    from core.gpo_reports import collect_gpo_links

    for link in collect_gpo_links(Path("exports/gpo")):
        print(link.name, link.path)
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from core.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GpoLink:
    """A GPO name and one scope-of-management path it is linked to."""
    name: str
    path: str
    report: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "path": self.path, "report": self.report}


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element, name: str) -> Iterator[ET.Element]:
    return (child for child in element if _local(child.tag) == name)


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in _children(element, name):
        if child.text and child.text.strip():
            return child.text.strip()
    return None


def parse_gpo_report(path: Path) -> List[GpoLink]:
    """
    Extract (name, path) pairs from one report.

    A GPO without links yields a single entry with an empty path.

    Raises:
        ValidationError: If the file is not a GPO report
    """
    path = Path(path)
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise ValidationError(f"{path.name} is not valid XML: {e}") from e

    if _local(root.tag) != "GPO":
        raise ValidationError(f"{path.name} is not a GPO report (root element {_local(root.tag)})")

    name = _child_text(root, "Name")
    if not name:
        raise ValidationError(f"{path.name} has no GPO name")

    links = [
        GpoLink(name=name, path=som_path, report=path.name)
        for link in _children(root, "LinksTo")
        for som_path in [_child_text(link, "SOMPath")]
        if som_path
    ]
    return links or [GpoLink(name=name, path="", report=path.name)]


def collect_gpo_links(directory: Path, pattern: str = "*.xml") -> List[GpoLink]:
    """Parse every report in a directory, sorted by GPO name then path."""
    directory = Path(directory)
    if not directory.is_dir():
        raise ValidationError(f"Report directory {directory} does not exist")

    links: List[GpoLink] = []
    for report in sorted(directory.glob(pattern)):
        if report.is_file():
            links.extend(parse_gpo_report(report))
    logger.info(f"Parsed {len(links)} GPO link(s) from {directory}")
    return sorted(links, key=lambda link: (link.name.lower(), link.path.lower()))
