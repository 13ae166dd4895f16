"""Configuration parsing and normalization helpers for routeboard.

Brief:
  Utilities used by the CLI entrypoint to turn the YAML config file into
  typed runtime settings:
    - reading YAML config files
    - splitting listen addresses
    - normalizing the ``web`` block into WebOptions
    - building the seed snapshot from the ``providers`` block

Inputs:
  - YAML config dicts and paths

Outputs:
  - WebOptions, ConfigSnapshot and plain dicts
"""

from __future__ import annotations

import dataclasses
from typing import Any, Dict, Optional, Tuple

import yaml
from pydantic import ValidationError

from ..ingest import DEFAULT_QUEUE_SIZE
from ..models import ConfigSnapshot, ProviderConfiguration

DEFAULT_ADDRESS = ":8080"


@dataclasses.dataclass(frozen=True)
class WebOptions:
    """Brief: Startup-fixed settings of the REST/dashboard listener.

    Inputs (fields):
      - address: Listen address as configured (e.g. ":8080").
      - cert_file / key_file: TLS certificate and key paths; TLS is used only
        when both are set.
      - read_only: Reject every mutating request with 403.
      - www_root: Optional directory overriding the bundled dashboard assets.
    """

    address: str = DEFAULT_ADDRESS
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    read_only: bool = False
    www_root: Optional[str] = None

    @property
    def tls_enabled(self) -> bool:
        return bool(self.cert_file) and bool(self.key_file)

    @property
    def host(self) -> str:
        return parse_address(self.address)[0]

    @property
    def port(self) -> int:
        return parse_address(self.address)[1]


def load_config_file(path: str) -> Dict[str, Any]:
    """Brief: Read and parse a YAML config file.

    Inputs:
      - path: Filesystem path of the YAML document.

    Outputs:
      - dict: Parsed mapping ({} for an empty file).

    Raises:
      - OSError: file cannot be read.
      - ValueError: YAML is malformed or its top level is not a mapping.
    """

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid configuration in {path}: top level must be a mapping")
    return data


def parse_address(address: str) -> Tuple[str, int]:
    """Brief: Split a listen address into (host, port).

    Inputs:
      - address: "host:port", ":port" (all interfaces) or "[v6addr]:port".

    Outputs:
      - (host, port): host is "" for all interfaces; brackets are stripped.

    Raises:
      - ValueError: missing or out-of-range port.

    Example:
      >>> parse_address(":8080")
      ('', 8080)
      >>> parse_address("[::1]:9000")
      ('::1', 9000)
    """

    text = str(address or "").strip()
    host, sep, port_text = text.rpartition(":")
    if not sep:
        raise ValueError(f"listen address {address!r} must include a port (host:port)")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"IPv6 listen address {address!r} must be bracketed, e.g. [::1]:8080")
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"listen address {address!r} has a non-numeric port") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"listen address {address!r} has an out-of-range port")
    return host, port


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_web_options(
    web_cfg: Optional[Dict[str, Any]],
    *,
    address: Optional[str] = None,
    read_only: Optional[bool] = None,
) -> WebOptions:
    """Brief: Normalize the ``web`` config block (plus CLI overrides).

    Inputs:
      - web_cfg: The ``web`` mapping from YAML, or None.
      - address: Optional CLI override for web.address.
      - read_only: Optional CLI override; only True has an effect so a flag
        can switch read-only mode on but never off.

    Outputs:
      - WebOptions with a validated address.

    Example:
      >>> parse_web_options({"address": "127.0.0.1:8081", "read_only": True}).port
      8081
    """

    cfg = web_cfg or {}
    if not isinstance(cfg, dict):
        raise ValueError("config.web must be a mapping")

    options = WebOptions(
        address=str(address or cfg.get("address") or DEFAULT_ADDRESS),
        cert_file=_opt_str(cfg.get("cert_file")),
        key_file=_opt_str(cfg.get("key_file")),
        read_only=bool(read_only) or bool(cfg.get("read_only", False)),
        www_root=_opt_str(cfg.get("www_root")),
    )
    parse_address(options.address)
    return options


def get_queue_size(cfg: Dict[str, Any]) -> int:
    """Brief: Return ingest.queue_size (default 100), rejecting values < 1."""

    ingest_cfg = cfg.get("ingest") or {}
    size = int(ingest_cfg.get("queue_size", DEFAULT_QUEUE_SIZE))
    if size < 1:
        raise ValueError("config.ingest.queue_size must be >= 1")
    return size


def parse_seed_providers(providers_cfg: Optional[Dict[str, Any]]) -> ConfigSnapshot:
    """Brief: Build the initial snapshot from the ``providers`` block.

    Inputs:
      - providers_cfg: Mapping of provider id -> configuration mapping (the
        same JSON shape accepted by PUT /api/providers/web), or None.

    Outputs:
      - ConfigSnapshot (empty when nothing is configured).

    Raises:
      - ValueError: a provider entry does not match the configuration shape.
    """

    if not providers_cfg:
        return ConfigSnapshot()
    if not isinstance(providers_cfg, dict):
        raise ValueError("config.providers must be a mapping")

    providers: Dict[str, ProviderConfiguration] = {}
    for name, raw in providers_cfg.items():
        try:
            providers[str(name)] = ProviderConfiguration.model_validate(raw or {})
        except ValidationError as exc:
            raise ValueError(f"config.providers.{name} is invalid: {exc}") from exc
    return ConfigSnapshot(providers=providers)
