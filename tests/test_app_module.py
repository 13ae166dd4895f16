"""
Brief: Tests for the standalone routeboard.app ASGI module.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from routeboard import app as rb_app


def test_app_module_exposes_fastapi_app_instance() -> None:
    assert isinstance(rb_app.app, FastAPI)
    assert rb_app.app.state.store is rb_app.store
    assert rb_app.aggregator.is_alive()


def test_app_module_serves_empty_snapshot() -> None:
    client = TestClient(rb_app.app)
    resp = client.get("/api/providers")
    assert resp.status_code == 200
    assert isinstance(resp.json(), dict)
