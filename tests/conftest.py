"""
Brief: Global pytest configuration enforcing per-test 10s timeout and shared
DNSSEC fixtures.

Inputs:
  - None

Outputs:
  - None
"""

import datetime
import logging
import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'zonekeeper' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from zonekeeper.dnssec.key_generator import KeyGenerator  # noqa: E402
from zonekeeper.dnssec.key_store import FileKeyStore  # noqa: E402
from zonekeeper.zones import Zone  # noqa: E402

T0 = datetime.datetime(2024, 3, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)

EXAMPLE_ZONE_TEXT = """\
@    3600 IN SOA ns1.example.test. hostmaster.example.test. 1 7200 900 1209600 300
@    3600 IN NS  ns1.example.test.
@         IN A   192.0.2.1
ns1       IN A   192.0.2.53
www       IN A   192.0.2.2
mail      IN MX  10 mx.example.test.
mx        IN A   192.0.2.25
"""


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
        # Fallback: no-op on platforms without SIGALRM
        yield


@pytest.fixture(autouse=True)
def restore_root_logger():
    """
    Brief: Restore root logger handlers and level changed by init_logging().

    Inputs:
      - None

    Outputs:
      - None
    """
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)


@pytest.fixture
def key_store(tmp_path):
    """Brief: Empty FileKeyStore under a temporary directory."""
    return FileKeyStore(tmp_path / "keys")


@pytest.fixture
def ecdsa_pair(key_store):
    """Brief: Provisioned ECDSAP256SHA256 key pair (fast to generate)."""
    return KeyGenerator(key_store).ensure_key_pair("ECDSAP256SHA256")


@pytest.fixture
def example_zone():
    """Brief: Small unsigned zone with SOA, NS, address and MX records."""
    return Zone(name="example.test", text=EXAMPLE_ZONE_TEXT)


@pytest.fixture
def t0():
    """Brief: Fixed UTC instant used as the signing clock."""
    return T0
