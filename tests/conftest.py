"""
Brief: Global pytest configuration and shared fixtures.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'routeboard' is importable without installing.
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from routeboard.models import ConfigSnapshot, ProviderConfiguration  # noqa: E402


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


DOCKER_CONFIG = {
    "backends": {
        "web-backend": {
            "servers": {
                "server-1": {"url": "http://172.17.0.2:80", "weight": 1},
                "server-2": {"url": "http://172.17.0.3:80", "weight": 2},
            },
            "loadBalancer": {"method": "wrr"},
        },
        "empty-backend": {},
    },
    "frontends": {
        "frontend-web": {
            "backend": "web-backend",
            "entryPoints": ["http"],
            "passHostHeader": True,
            "priority": 10,
            "routes": {"route-host": {"rule": "Host:web.example.com"}},
        }
    },
}


@pytest.fixture
def docker_snapshot() -> ConfigSnapshot:
    """
    Brief: Snapshot holding a "docker" provider with one backend pool and frontend.

    Inputs:
      - None

    Outputs:
      - ConfigSnapshot with providers "docker" and "file" (empty).
    """
    return ConfigSnapshot(
        providers={
            "docker": ProviderConfiguration.model_validate(DOCKER_CONFIG),
            "file": ProviderConfiguration(),
        }
    )
