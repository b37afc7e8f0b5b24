# risk_registry/monitoring.py
import time
import socket
from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
from prometheus_client.exposition import make_wsgi_app
from wsgiref.simple_server import make_server, WSGIServer
from socketserver import ThreadingMixIn
import threading
import logging

from risk_registry.state import ReporterStatus

logger = logging.getLogger(__name__)


class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """A WSGI server that runs in a separate thread to not block the registry."""
    allow_reuse_address = True
    daemon_threads = True


class Monitor:
    def __init__(self, host="127.0.0.1", port=9090):
        self.host = host
        self.port = port
        self.server = None
        self.thread = None

        # Isolated registry so several monitors can coexist in one process
        self.registry = CollectorRegistry()

        self.tx_counter = Counter('registry_transactions_total', 'Transactions processed', ['tx_type', 'status'], registry=self.registry)
        self.tx_latency = Histogram('registry_tx_processing_latency_seconds', 'Time to process a transaction', registry=self.registry)
        self.event_counter = Counter('registry_events_total', 'Notifications emitted', ['event'], registry=self.registry)
        self.reporters = Gauge('registry_reporters', 'Reporters by status', ['status'], registry=self.registry)

    def start_server(self):
        """Starts the Prometheus HTTP exporter with retry logic."""
        app = make_wsgi_app(self.registry)

        max_retries = 5
        retry_delay = 2

        for attempt in range(max_retries):
            try:
                self.server = make_server(self.host, self.port, app, ThreadingWSGIServer)
                self.server.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

                self.thread = threading.Thread(target=self.server.serve_forever)
                self.thread.daemon = True
                self.thread.start()
                logger.info(f"Prometheus server started on http://{self.host}:{self.port}")
                return
            except OSError as e:
                if e.errno == 98:  # Address already in use
                    if attempt < max_retries - 1:
                        logger.warning(f"Port {self.port} in use, retrying in {retry_delay}s (attempt {attempt+1}/{max_retries})...")
                        time.sleep(retry_delay)
                    else:
                        logger.error(f"Failed to bind to port {self.port} after {max_retries} attempts")
                        raise
                else:
                    raise

    def stop_server(self):
        """Stops the HTTP server."""
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
            logger.info("Prometheus server stopped.")

    def update(self, reporters):
        """Refresh the per-status reporter gauge from a list of reporters."""
        counts = {status: 0 for status in ReporterStatus}
        for reporter in reporters:
            counts[reporter.status] += 1
        for status, count in counts.items():
            self.reporters.labels(status=status.name.lower()).set(count)

    def move_reporter(self, old_status, new_status):
        """Shift one reporter between status gauges; ``old_status`` is None for a new reporter."""
        if old_status is not None:
            self.reporters.labels(status=ReporterStatus(old_status).name.lower()).dec()
        self.reporters.labels(status=ReporterStatus(new_status).name.lower()).inc()

    def record_tx(self, tx_type: str, status: str, latency: float):
        self.tx_counter.labels(tx_type=tx_type, status=status).inc()
        self.tx_latency.observe(latency)

    def record_event(self, name: str):
        self.event_counter.labels(event=name).inc()
