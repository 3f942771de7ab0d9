"""
Brief: Global pytest configuration enforcing a per-test 10s timeout.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'gatewayapi_dns' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


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


# Install handler if supported on this platform
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


def make_route(
    uid, hostnames, *, kind="HTTPRoute", name="web", namespace="default", resource_version=None
):
    """Brief: Build a Gateway API route body as delivered by the API server.

    Inputs:
      - uid: metadata.uid of the route.
      - hostnames: spec.hostnames list.
      - kind/name/namespace: optional overrides.
      - resource_version: optional metadata.resourceVersion.

    Outputs:
      - dict resource body.
    """

    route = {
        "apiVersion": "gateway.networking.k8s.io/v1",
        "kind": kind,
        "metadata": {"name": name, "namespace": namespace, "uid": uid},
        "spec": {"hostnames": list(hostnames)},
    }
    if resource_version is not None:
        route["metadata"]["resourceVersion"] = resource_version
    return route


def make_ingress(uid, hosts, *, name="web", namespace="default"):
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {"name": name, "namespace": namespace, "uid": uid},
        "spec": {"rules": [{"host": h} if h else {} for h in hosts]},
    }
