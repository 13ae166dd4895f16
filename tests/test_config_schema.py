"""Brief: Tests for JSON Schema validation of the YAML configuration.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

import json
import logging

import pytest

from routeboard.config.config_schema import get_default_schema_path, validate_config


def test_default_schema_is_bundled_with_the_package() -> None:
    path = get_default_schema_path()
    assert path.name == "config-schema.json"
    assert path.parent.name == "assets"
    assert path.parent.parent.name == "routeboard"
    assert path.is_file()
    assert json.loads(path.read_text())["title"] == "routeboard configuration"


def test_full_valid_config_passes() -> None:
    cfg = {
        "debug": True,
        "logging": {"level": "debug", "stderr": True, "syslog": {"tag": "rb"}},
        "web": {
            "address": "127.0.0.1:8080",
            "cert_file": None,
            "key_file": None,
            "read_only": True,
        },
        "ingest": {"queue_size": 10},
        "providers": {
            "file": {
                "backends": {"b": {"servers": {"s": {"url": "http://a", "weight": 1}}}},
                "frontends": {"f": {"backend": "b", "routes": {"r": {"rule": "Path:/"}}}},
            }
        },
    }
    validate_config(cfg)


def test_wrong_type_raises_with_path() -> None:
    with pytest.raises(ValueError) as excinfo:
        validate_config({"web": {"read_only": "yes"}}, config_path="cfg.yaml")
    message = str(excinfo.value)
    assert "cfg.yaml" in message
    assert "config.web.read_only" in message


def test_queue_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        validate_config({"ingest": {"queue_size": 0}})


def test_unknown_keys_policies(caplog) -> None:
    caplog.set_level(logging.WARNING)
    validate_config({"mystery": 1})
    assert "mystery" in caplog.text

    validate_config({"mystery": 1}, unknown_keys="ignore")
    with pytest.raises(ValueError):
        validate_config({"mystery": 1}, unknown_keys="error")
    with pytest.raises(ValueError):
        validate_config({}, unknown_keys="sometimes")


def test_provider_unknown_fields_are_allowed() -> None:
    validate_config({"providers": {"file": {"backends": {}, "extra": {"x": 1}}}}, unknown_keys="error")


def test_non_mapping_config_is_rejected() -> None:
    with pytest.raises(ValueError):
        validate_config(["not", "a", "mapping"])  # type: ignore[arg-type]


def test_missing_or_broken_schema_skips_validation(tmp_path, caplog) -> None:
    caplog.set_level(logging.WARNING)
    validate_config({"web": {"read_only": "yes"}}, schema_path=tmp_path / "nope.json")
    assert "not found" in caplog.text

    broken = tmp_path / "broken.json"
    broken.write_text("{")
    validate_config({"web": {"read_only": "yes"}}, schema_path=broken)

    bad_schema = tmp_path / "bad.json"
    bad_schema.write_text(json.dumps({"type": 12}))
    validate_config({}, schema_path=bad_schema)
    assert "unusable" in caplog.text


def test_unknown_key_is_reported_under_its_section(caplog) -> None:
    caplog.set_level(logging.WARNING)
    validate_config({"web": {"adress": ":8080"}}, config_path="rb.yaml")
    assert "Invalid configuration in rb.yaml:" in caplog.text
    assert "- config.web: Additional properties are not allowed ('adress' was unexpected)" in caplog.text

    with pytest.raises(ValueError) as excinfo:
        validate_config({"ingest": {"queue_size": 0, "depth": 3}}, config_path="rb.yaml")
    lines = str(excinfo.value).splitlines()
    assert lines[0] == "Invalid configuration in rb.yaml:"
    assert any(line.startswith("- config.ingest.queue_size:") for line in lines)
    assert any("'depth' was unexpected" in line for line in lines)
