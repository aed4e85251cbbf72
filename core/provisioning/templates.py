"""
Parameterized SQL*Plus script generation.

Installation templates are written for interactive use: they ask for values
with ACCEPT/PROMPT and pause for confirmation. Rendering turns them into
unattended scripts:

1. interactive lines are removed
2. a sorted DEFINE block supplies the values the prompts used to collect
3. the script stops on the first error and ends with EXIT

Rendering is a pure function of (template, values): the same config always
produces byte-identical scripts.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Mapping, MutableMapping, Tuple

from core.provisioning.models import OWNER_TEMPLATE, SYSDBA_TEMPLATE, ProvisioningConfig

logger = logging.getLogger(__name__)

INTERACTIVE_LINE = re.compile(r"^\s*(ACC(EPT)?|PRO(MPT)?|PAU(SE)?|HOST\s+PAUSE)\b", re.IGNORECASE)
TERMINATOR_LINE = re.compile(r"^\s*(EXIT|QUIT)\b", re.IGNORECASE)

HEADER = (
    "SET VERIFY OFF",
    "SET DEFINE ON",
    "WHENEVER SQLERROR EXIT SQL.SQLCODE",
)
TERMINATOR = "EXIT"

# Artifact keys of generated scripts in ExecutionState.artifacts
SCRIPT_ARTIFACT_PREFIX = "script:"


def _define(name: str, value: str) -> str:
    escaped = str(value).replace('"', '""')
    return f'DEFINE {name} = "{escaped}"'


def render_script(template_text: str, values: Mapping[str, str]) -> str:
    """
    Render an interactive template into an unattended script.

    Args:
        template_text: Template contents
        values: Substitution variables, injected as DEFINEs

    Returns:
        Script text with ``\\n`` line endings and a trailing newline
    """
    lines = template_text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    body = [line.rstrip() for line in lines if not INTERACTIVE_LINE.match(line)]

    # Drop trailing blank lines so the terminator check looks at real content
    while body and not body[-1].strip():
        body.pop()

    output = list(HEADER)
    output.extend(_define(name, values[name]) for name in sorted(values))
    output.append("")
    output.extend(body)

    if not body or not TERMINATOR_LINE.match(body[-1]):
        output.append(TERMINATOR)

    return "\n".join(output) + "\n"


def script_values(config: ProvisioningConfig) -> Dict[str, str]:
    """Substitution values derived from the config (no clocks, no randomness)."""
    values = {
        "customer": config.customer,
        "schema_version": config.schema_version,
        "owner_user": config.owner.username,
        "owner_password": config.owner.password,
        "language": config.language,
        "locale": config.locale,
        "timezone": config.timezone,
        "use_nms": "Y" if config.uses_nms else "N",
    }
    if config.uses_nms:
        values["nms_data_dir"] = str(config.nms_data_dir)
        values["nms_index_dir"] = str(config.nms_index_dir)
    return values


def generate_scripts(config: ProvisioningConfig) -> Dict[str, Path]:
    """
    Render the sysdba and schema-owner templates into the scripts directory.

    Returns:
        {"sysdba": path, "owner": path}
    """
    values = script_values(config)
    config.scripts_dir.mkdir(parents=True, exist_ok=True)

    generated = {}
    try:
        for role, template_name in (("sysdba", SYSDBA_TEMPLATE), ("owner", OWNER_TEMPLATE)):
            template_path = config.template_dir / template_name
            text = template_path.read_text(encoding="utf-8")
            output_path = config.scripts_dir / template_name
            output_path.write_bytes(render_script(text, values).encode("utf-8"))
            generated[role] = output_path
            logger.debug(f"Generated {output_path} from {template_path}")
    except OSError:
        # Scripts hold passwords; never leave a partial set behind
        for path in generated.values():
            path.unlink(missing_ok=True)
        raise

    return generated


def remove_generated_scripts(artifacts: MutableMapping[str, Path]) -> List[Tuple[Path, OSError]]:
    """
    Delete every generated script registered in ``artifacts``.

    Entries are removed from ``artifacts`` whether or not the file could be
    deleted, so a second call never retries them.

    Returns:
        (path, error) for each file that could not be deleted
    """
    failures = []
    for key in sorted(k for k in artifacts if k.startswith(SCRIPT_ARTIFACT_PREFIX)):
        path = artifacts.pop(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            failures.append((path, e))
    return failures
