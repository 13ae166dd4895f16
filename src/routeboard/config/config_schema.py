"""JSON Schema validation for the routeboard YAML configuration.

The schema ships inside the package (``routeboard/assets/config-schema.json``)
and describes the top-level ``debug``, ``logging``, ``web``, ``ingest`` and
``providers`` keys. Provider entries are deliberately open: fields routeboard
does not know are carried through, exactly as the PUT endpoint tolerates them.
Anywhere else an unrecognized key is usually a typo, so it is reported
according to the ``unknown_keys`` policy instead of failing outright.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from jsonschema import Draft202012Validator, ValidationError
from jsonschema.exceptions import SchemaError

logger = logging.getLogger("routeboard.config")

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "assets" / "config-schema.json"

UNKNOWN_KEY_POLICIES = ("ignore", "warn", "error")


def get_default_schema_path() -> Path:
    """Brief: Return the schema bundled with the routeboard package."""

    return SCHEMA_PATH


def _config_location(err: ValidationError) -> str:
    """Brief: Render an error location the way config_parser names keys.

    Example:
      ``config.web.read_only`` or ``config.providers.file.backends``; errors
      about the document itself are reported as ``config``.
    """

    return ".".join(["config", *(str(p) for p in err.path)])


def _report(config_path: Optional[str], errors: Iterable[ValidationError]) -> str:
    lines = [f"Invalid configuration in {config_path or '<config dict>'}:"]
    lines.extend(f"- {_config_location(err)}: {err.message}" for err in errors)
    return "\n".join(lines)


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = "./config.yaml",
    unknown_keys: str = "warn",
) -> None:
    """Brief: Check a parsed config.yaml mapping before routeboard starts.

    Inputs:
      - cfg: Top-level mapping loaded from YAML.
      - schema_path: Alternative schema file; the bundled one by default.
      - config_path: Name of the YAML file, used in messages only.
      - unknown_keys: What to do with keys the schema does not describe
        (e.g. ``web.adress``): "ignore", "warn" (log them) or "error".

    Outputs:
      - None when the configuration is usable.

    Raises:
      - ValueError: cfg is not a mapping, a value has the wrong type or range
        (``web.read_only: "yes"``, ``ingest.queue_size: 0``), or unknown keys
        are present under the "error" policy.

    A schema file that is missing or unreadable is logged and validation is
    skipped; startup continues with the parser's own checks.

    Example:
      >>> validate_config({"web": {"address": ":8080", "read_only": True}})
    """

    if unknown_keys not in UNKNOWN_KEY_POLICIES:
        raise ValueError(
            f"unknown_keys must be one of {', '.join(UNKNOWN_KEY_POLICIES)}; got {unknown_keys!r}"
        )
    if not isinstance(cfg, dict):
        raise ValueError(
            f"Invalid configuration in {config_path or '<config dict>'}: expected a mapping of "
            "debug/logging/web/ingest/providers settings"
        )

    path = schema_path or get_default_schema_path()
    if not path.is_file():
        logger.warning("Configuration schema %s not found; config.yaml is not schema-checked", path)
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            schema = json.load(f)
        Draft202012Validator.check_schema(schema)
    except (OSError, json.JSONDecodeError, SchemaError) as exc:
        logger.warning(
            "Configuration schema %s is unusable (%s); config.yaml is not schema-checked",
            path,
            exc,
        )
        return None

    problems: List[ValidationError] = []
    unknown: List[ValidationError] = []
    for err in Draft202012Validator(schema).iter_errors(cfg):
        (unknown if err.validator == "additionalProperties" else problems).append(err)

    if problems:
        raise ValueError(_report(config_path, sorted(problems + unknown, key=_config_location)))
    if not unknown or unknown_keys == "ignore":
        return None

    message = _report(config_path, sorted(unknown, key=_config_location))
    if unknown_keys == "error":
        raise ValueError(message)
    logger.warning("%s", message)
    return None
