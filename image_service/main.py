import logging
import sys

from flask import Flask, request
from werkzeug.exceptions import MethodNotAllowed
from prometheus_client import CollectorRegistry
from prometheus_flask_exporter import PrometheusMetrics

from image_service import __version__
from image_service.lifecycle import LifecycleController, install_signal_handlers
from image_service.workload import format_elapsed, parse_duration, simulate_filter

LOG_FORMAT = '{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}'

# Both routes answer whatever the method, like a bare handler would
ALL_METHODS = ['GET', 'HEAD', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS', 'TRACE', 'CONNECT']
TEXT_PLAIN = {'Content-Type': 'text/plain; charset=utf-8'}

logger = logging.getLogger(__name__)


def create_app(registry=None):
    """Build the Flask app with its routes and metrics"""
    app = Flask(__name__)
    metrics = PrometheusMetrics(
        app,
        group_by='endpoint',
        registry=registry if registry is not None else CollectorRegistry(),
    )
    metrics.info('app_info', 'Image processing service info', version=__version__)

    @app.route('/', defaults={'path': ''}, methods=ALL_METHODS)
    @app.route('/<path:path>', methods=ALL_METHODS)
    def health(path):
        """Health check - also the fallback for unknown paths"""
        return "Image Processing Service: Ready", 200, TEXT_PLAIN

    @app.route('/process-image', methods=ALL_METHODS)
    @metrics.counter('image_process_requests_total', 'Number of simulated image processing requests')
    def process_image():
        """Simulate a CPU-bound image filter for ?duration= milliseconds"""
        duration_ms = parse_duration(request.args.get('duration'))
        result = simulate_filter(duration_ms)
        elapsed = format_elapsed(result.elapsed_ns)

        logger.info(f"Processed image: duration_ms={duration_ms}, pixels={result.pixels}, elapsed={elapsed}")

        body = f"Image processed successfully. Filter applied to {result.pixels} pixels in {elapsed}"
        return body, 200, TEXT_PLAIN

    @app.errorhandler(MethodNotAllowed)
    def any_method(error):
        """Serve verbs outside ALL_METHODS (e.g. PURGE) with the matching view"""
        if request.path == '/process-image':
            return process_image()
        return health(request.path.lstrip('/'))

    return app


def main():
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    app = create_app()
    controller = LifecycleController(app)
    # Register before binding so an early SIGTERM still drains cleanly
    install_signal_handlers(controller)

    try:
        controller.start()
    except OSError as exc:
        logger.critical(f"Failed to start server on :{controller.port}: {exc}")
        sys.exit(1)

    sys.exit(controller.run())


if __name__ == '__main__':
    main()
