#!/usr/bin/env python3
"""
List GPO names and the paths they are linked to.

    python scripts/list_gpo_links.py exports/gpo
    python scripts/list_gpo_links.py exports/gpo --json
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import ValidationError
from core.gpo_reports import collect_gpo_links


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="List GPO links from XML reports")
    parser.add_argument("directory", type=Path, help="Directory of GPO XML reports")
    parser.add_argument("--pattern", default="*.xml", help="Report file glob")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of tab-separated lines")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        links = collect_gpo_links(args.directory, args.pattern)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([link.to_dict() for link in links], indent=2))
    else:
        for link in links:
            print(f"{link.name}\t{link.path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
