"""Brief: Tests for start_webserver() and WebServerHandle lifecycle.

Inputs:
  - monkeypatch to replace uvicorn.Server with an in-process fake

Outputs:
  - Assertions about synchronous bind failures, background startup and stop.
"""

from __future__ import annotations

import logging
import socket
import threading

import pytest
import uvicorn

from routeboard.config.config_parser import WebOptions
from routeboard.ingest import ConfigIngestChannel
from routeboard.servers.webserver import (
    ListenerBindError,
    WebServerHandle,
    _bind_listener,
    _Suppress2xxAccessFilter,
    install_uvicorn_2xx_suppression,
    start_webserver,
)
from routeboard.snapshot import new_config_store


class _FakeServer:
    """Brief: Stand-in for uvicorn.Server that idles until should_exit is set."""

    instances: list["_FakeServer"] = []

    def __init__(self, config) -> None:
        self.config = config
        self.should_exit = False
        self.sockets = None
        self.started = threading.Event()
        _FakeServer.instances.append(self)

    def run(self, sockets=None) -> None:
        self.sockets = sockets
        self.started.set()
        while not self.should_exit:
            threading.Event().wait(0.01)


class _CrashingServer(_FakeServer):
    def run(self, sockets=None) -> None:
        raise SystemExit(1)


@pytest.fixture(autouse=True)
def _reset_fakes():
    _FakeServer.instances.clear()
    yield


def test_start_webserver_runs_in_background_and_stops(monkeypatch) -> None:
    monkeypatch.setattr(uvicorn, "Server", _FakeServer)

    handle = start_webserver(
        WebOptions(address="127.0.0.1:0"), new_config_store(), ConfigIngestChannel()
    )
    try:
        fake = _FakeServer.instances[0]
        assert fake.started.wait(2)
        assert handle.is_running()
        host, port = handle.address
        assert host == "127.0.0.1"
        assert port > 0
        assert fake.sockets[0].getsockname()[1] == port
    finally:
        handle.stop(timeout=2)

    assert not handle.is_running()


def test_start_webserver_bind_failure_is_raised_synchronously(monkeypatch) -> None:
    monkeypatch.setattr(uvicorn, "Server", _FakeServer)
    busy = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    busy.bind(("127.0.0.1", 0))
    busy.listen(1)
    port = busy.getsockname()[1]
    try:
        with pytest.raises(ListenerBindError) as excinfo:
            start_webserver(
                WebOptions(address=f"127.0.0.1:{port}"),
                new_config_store(),
                ConfigIngestChannel(),
            )
    finally:
        busy.close()

    assert str(port) in str(excinfo.value)
    assert _FakeServer.instances == []


def test_start_webserver_missing_tls_files_fail_startup(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(uvicorn, "Server", _FakeServer)
    options = WebOptions(
        address="127.0.0.1:0",
        cert_file=str(tmp_path / "missing.crt"),
        key_file=str(tmp_path / "missing.key"),
    )

    with pytest.raises(ListenerBindError):
        start_webserver(options, new_config_store(), ConfigIngestChannel())


def test_server_thread_crash_is_logged(monkeypatch, caplog) -> None:
    caplog.set_level(logging.ERROR, logger="routeboard.webserver")
    monkeypatch.setattr(uvicorn, "Server", _CrashingServer)

    handle = start_webserver(
        WebOptions(address="127.0.0.1:0"), new_config_store(), ConfigIngestChannel()
    )
    handle.stop(timeout=2)

    assert not handle.is_running()
    assert "terminated unexpectedly" in caplog.text


def test_handle_without_socket_has_no_address() -> None:
    thread = threading.Thread(target=lambda: None)
    thread.start()
    handle = WebServerHandle(thread)
    handle.stop(timeout=1)
    assert handle.address is None
    assert not handle.is_running()


def test_access_filter_drops_only_2xx() -> None:
    flt = _Suppress2xxAccessFilter()

    def record(args):
        return logging.LogRecord("uvicorn.access", logging.INFO, __file__, 1, "%s", args, None)

    assert flt.filter(record(("127.0.0.1", "GET", "/api", "1.1", 200))) is False
    assert flt.filter(record(("127.0.0.1", "GET", "/nope", "1.1", 404))) is True
    assert flt.filter(record(("no status",))) is True


def test_install_suppression_is_idempotent() -> None:
    install_uvicorn_2xx_suppression()
    install_uvicorn_2xx_suppression()
    access = logging.getLogger("uvicorn.access")
    assert sum(isinstance(f, _Suppress2xxAccessFilter) for f in access.filters) == 1


def _record_create_server(monkeypatch, dualstack: bool) -> list:
    """Brief: Replace socket.create_server with a recorder.

    Inputs:
      - monkeypatch: pytest fixture.
      - dualstack: Value reported by socket.has_dualstack_ipv6().

    Outputs:
      - list receiving (address, kwargs) per call.
    """

    calls: list = []

    def _create_server(address, **kwargs):
        calls.append((address, kwargs))
        return object()

    monkeypatch.setattr(socket, "has_dualstack_ipv6", lambda: dualstack)
    monkeypatch.setattr(socket, "create_server", _create_server)
    return calls


def test_bind_all_interfaces_uses_dualstack_when_available(monkeypatch) -> None:
    calls = _record_create_server(monkeypatch, dualstack=True)
    _bind_listener("", 8080)
    assert calls == [(("", 8080), {"family": socket.AF_INET6, "dualstack_ipv6": True})]


def test_bind_all_interfaces_falls_back_to_ipv4(monkeypatch) -> None:
    calls = _record_create_server(monkeypatch, dualstack=False)
    _bind_listener("", 8080)
    assert calls == [(("", 8080), {"family": socket.AF_INET, "dualstack_ipv6": False})]


def test_bind_explicit_hosts_keep_their_family(monkeypatch) -> None:
    calls = _record_create_server(monkeypatch, dualstack=True)
    _bind_listener("127.0.0.1", 1)
    _bind_listener("::1", 2)
    assert [kw["family"] for _, kw in calls] == [socket.AF_INET, socket.AF_INET6]
    assert all(kw["dualstack_ipv6"] is False for _, kw in calls)
