"""Start/stop sequencing for the HTTP listener.

The controller walks a one-shot lifecycle::

    STARTING -> SERVING -> DRAINING -> STOPPED

The listener runs on a background thread while the main thread blocks on a
single wait for SIGINT/SIGTERM. On the first signal the controller sleeps
through a fixed grace period (so a load balancer can deregister the
instance), stops accepting connections, then gives in-flight requests a
bounded amount of time to finish before returning.
"""
import enum
import logging
import signal
import socket
import threading
import time

from werkzeug.serving import make_server
from werkzeug.wsgi import ClosingIterator

HOST = '0.0.0.0'
PORT = 8080
GRACE_PERIOD = 5.0
SHUTDOWN_TIMEOUT = 15.0

logger = logging.getLogger(__name__)


class LifecycleState(enum.Enum):
    STARTING = 'starting'
    SERVING = 'serving'
    DRAINING = 'draining'
    STOPPED = 'stopped'


class InFlightTracker:
    """WSGI middleware that counts requests currently being handled."""

    def __init__(self, wsgi_app):
        self.wsgi_app = wsgi_app
        self._active = 0
        self._cond = threading.Condition()

    @property
    def active(self) -> int:
        with self._cond:
            return self._active

    def _finished(self):
        with self._cond:
            self._active -= 1
            if self._active == 0:
                self._cond.notify_all()

    def __call__(self, environ, start_response):
        with self._cond:
            self._active += 1
        try:
            app_iter = self.wsgi_app(environ, start_response)
        except BaseException:
            self._finished()
            raise
        # Count the request until the server has written and closed the body
        return ClosingIterator(app_iter, self._finished)

    def wait_idle(self, timeout: float) -> bool:
        """Block until no request is in flight. False if ``timeout`` ran out first."""
        with self._cond:
            return self._cond.wait_for(lambda: self._active == 0, timeout)


def _signal_name(signum) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


class LifecycleController:
    """Owns the server handle and drives it through its lifecycle."""

    def __init__(self, app, host=HOST, port=PORT,
                 grace_period=GRACE_PERIOD, shutdown_timeout=SHUTDOWN_TIMEOUT):
        self.tracker = InFlightTracker(app)
        self.host = host
        self.port = port
        self.grace_period = grace_period
        self.shutdown_timeout = shutdown_timeout
        self.state = LifecycleState.STARTING

        self._server = None
        self._thread = None
        self._stop = threading.Event()
        self._signal = None
        self._failure = None

    @property
    def server_port(self) -> int:
        return self._server.server_address[1]

    @property
    def received_signal(self):
        return self._signal

    def start(self):
        """Bind the listener and serve it from a background thread.

        Raises ``OSError`` if the address cannot be bound.
        """
        if self.state is not LifecycleState.STARTING:
            raise RuntimeError(f"Cannot start server in state {self.state.value}")

        # Bind here so a busy port surfaces as OSError; werkzeug would sys.exit
        sock = socket.create_server((self.host, self.port))
        try:
            self._server = make_server(self.host, self.port, self.tracker,
                                       threaded=True, fd=sock.fileno())
        finally:
            sock.close()
        logger.info(f"Starting server on :{self.server_port}")
        self.state = LifecycleState.SERVING

        self._thread = threading.Thread(target=self._serve, name='http-server', daemon=True)
        self._thread.start()

    def _serve(self):
        try:
            self._server.serve_forever()
        except Exception as exc:
            logger.critical(f"Server loop terminated unexpectedly: {exc}", exc_info=True)
            self._failure = exc
            self._stop.set()

    def handle_signal(self, signum, frame):
        """Signal handler for SIGINT/SIGTERM. Only the first signal counts."""
        if self._signal is not None:
            logger.warning(f"Received signal: {_signal_name(signum)} while shutting down. Ignoring")
            return
        self._signal = signum
        self._stop.set()

    def wait_for_signal(self, timeout=None) -> bool:
        return self._stop.wait(timeout)

    def drain(self):
        """Run the grace period, stop the listener and wait for in-flight work."""
        self.state = LifecycleState.DRAINING
        logger.info(f"Received signal: {_signal_name(self._signal)}. Initiating graceful shutdown...")

        logger.info(f"Waiting {self.grace_period:g} seconds before shutting down server...")
        time.sleep(self.grace_period)

        deadline = time.monotonic() + self.shutdown_timeout
        self._server.shutdown()
        self._server.server_close()
        logger.info("Listener closed, no longer accepting connections")

        remaining = max(0.0, deadline - time.monotonic())
        if not self.tracker.wait_idle(remaining):
            logger.warning(
                f"Server forced to shutdown: deadline exceeded "
                f"({self.tracker.active} request(s) still in flight after {self.shutdown_timeout:g}s)"
            )

        self.state = LifecycleState.STOPPED
        logger.info("Server exiting")

    def run(self) -> int:
        """Block until a signal arrives, then shut down. Returns the exit code."""
        self.wait_for_signal()
        if self._failure is not None:
            self.state = LifecycleState.STOPPED
            return 1
        self.drain()
        return 0


def install_signal_handlers(controller):
    """Register the controller for SIGTERM (spot preemption) and SIGINT."""
    signal.signal(signal.SIGTERM, controller.handle_signal)
    signal.signal(signal.SIGINT, controller.handle_signal)
