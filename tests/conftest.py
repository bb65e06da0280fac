import re
import threading
import time

import pytest

from image_service.main import create_app

_ELAPSED_UNITS = {'ns': 1e-6, 'µs': 1e-3, 'ms': 1.0, 's': 1000.0}
_BODY_PATTERN = re.compile(r'^Image processed successfully\. Filter applied to (\d+) pixels in (\S+)$')


def parse_body(body):
    """Return (pixels, elapsed_ms) from a /process-image response body."""
    match = _BODY_PATTERN.match(body)
    assert match, f"unexpected body: {body!r}"
    pixels, elapsed = match.groups()
    if elapsed == '0s':
        return int(pixels), 0.0
    value, unit = re.match(r'^([0-9.]+)(ns|µs|ms|s)$', elapsed).groups()
    return int(pixels), float(value) * _ELAPSED_UNITS[unit]


def wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def run_in_thread(target, *args):
    """Run ``target`` in a daemon thread; the returned dict gets 'result' or 'error'."""
    outcome = {}

    def runner():
        try:
            outcome['result'] = target(*args)
        except Exception as exc:
            outcome['error'] = exc

    thread = threading.Thread(target=runner, daemon=True)
    thread.start()
    outcome['thread'] = thread
    return outcome


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
def client(app):
    return app.test_client()
