#!/usr/bin/env python3
"""
Provision an SMG database schema for a customer.

Runs the full sequence: schema creation, timezone correction, schema
upgrades, configuration import, customer parameters, reader account and
upgrade log verification.

Usage:
    python scripts/provision_database.py \\
        --customer ACME --schema-version 10.4.2 --target dbhost:1521/SMG \\
        --owner-user SMG --sysdba-user SYS --system-user SYSTEM \\
        --install-root D:/SMG/install --work-root D:/SMG/work

Passwords are read from --*-password or from SMG_OWNER_PASSWORD,
SMG_SYSDBA_PASSWORD and SMG_SYSTEM_PASSWORD.

Exit status is 0 when the run completed (with or without incidents) and 1
when it was aborted. Incidents are listed in the report written to
SMG_REPORT_DIR.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from config.settings import get_settings
from core.logging_config import configure_logging
from core.provisioning import Collaborators, ProvisioningConfig, ProvisioningSequencer
from core.sql_client import Credentials

logger = logging.getLogger("scripts.provision_database")


def _parse_param(value: str):
    if "=" not in value:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {value!r}")
    name, _, val = value.partition("=")
    return name.strip(), val


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Provision an SMG database schema")
    parser.add_argument("--customer", required=True, help="Customer name (selects dumps/<customer>)")
    parser.add_argument("--schema-version", required=True, help="Target schema version, e.g. 10.4.2")
    parser.add_argument("--target", required=True, help="Oracle connect descriptor")

    for role, env_var in (("owner", "SMG_OWNER_PASSWORD"),
                          ("sysdba", "SMG_SYSDBA_PASSWORD"),
                          ("system", "SMG_SYSTEM_PASSWORD")):
        parser.add_argument(f"--{role}-user", required=True, help=f"{role} username")
        parser.add_argument(
            f"--{role}-password",
            default=None,
            help=f"{role} password (default: ${env_var})",
        )

    parser.add_argument("--install-root", required=True, type=Path, help="Templates and dumps")
    parser.add_argument("--work-root", required=True, type=Path, help="Generated scripts and logs")
    parser.add_argument("--language", default="en")
    parser.add_argument("--locale", default="en_GB")
    parser.add_argument("--timezone", default="+01:00", help="Expected database timezone offset")
    parser.add_argument("--nms-data-dir", type=Path, default=None, help="Non-managed storage for data files")
    parser.add_argument("--nms-index-dir", type=Path, default=None, help="Non-managed storage for index files")
    parser.add_argument(
        "--param",
        action="append",
        type=_parse_param,
        default=[],
        metavar="NAME=VALUE",
        help="Extra customer parameter override (repeatable)",
    )
    parser.add_argument("--json", action="store_true", help="Print the run result as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def config_from_args(args: argparse.Namespace) -> ProvisioningConfig:
    def password(role: str) -> str:
        value = getattr(args, f"{role}_password")
        if value is None:
            value = os.getenv(f"SMG_{role.upper()}_PASSWORD", "")
        return value

    return ProvisioningConfig(
        customer=args.customer,
        schema_version=args.schema_version,
        target=args.target,
        owner=Credentials(args.owner_user, password("owner")),
        sysdba=Credentials(args.sysdba_user, password("sysdba"), sysdba=True),
        system=Credentials(args.system_user, password("system")),
        install_root=args.install_root,
        work_root=args.work_root,
        language=args.language,
        locale=args.locale,
        timezone=args.timezone,
        nms_data_dir=args.nms_data_dir,
        nms_index_dir=args.nms_index_dir,
        parameters=dict(args.param),
    )


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    settings = get_settings()
    configure_logging(settings)
    if args.verbose:
        for name in ("core", "config", "scripts", "smg"):
            logging.getLogger(name).setLevel(logging.DEBUG)

    config = config_from_args(args)
    sequencer = ProvisioningSequencer(
        Collaborators.from_settings(settings),
        settings,
        report_dir=settings.paths.report_dir,
    )
    result = sequencer.run(config)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"Status: {result.status.value}")
        if result.fatal_step:
            print(f"Aborted at: {result.fatal_step}: {result.fatal_message}")
        for incident in result.incidents:
            print(f"  [{incident.tag}] {incident.message}")
    if sequencer.last_report:
        logger.info(f"Incident report: {sequencer.last_report}")

    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
