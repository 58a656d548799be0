# proxy_deploy/monitoring.py
import time
import socket
import threading
import logging
from socketserver import ThreadingMixIn
from wsgiref.simple_server import make_server, WSGIServer

import psutil
from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
from prometheus_client.exposition import make_wsgi_app

logger = logging.getLogger(__name__)


# Threaded WSGI server for the Prometheus metrics
class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """A WSGI server that runs in a separate thread to not block the workflow."""
    allow_reuse_address = True
    daemon_threads = True


class Monitor:
    def __init__(self, host="127.0.0.1", port=9090, start_server=False):
        self.host = host
        self.port = port
        self.server = None
        self.thread = None
        self.process = psutil.Process()
        self.started_at = time.time()

        # Isolated registry so several monitors can coexist (tests)
        self.registry = CollectorRegistry()

        self.tx_counter = Counter('proxy_deploy_transactions_total', 'Resolved transactions by outcome', ['status'], registry=self.registry)
        self.tx_latency = Histogram('proxy_deploy_tx_confirmation_seconds', 'Time from signing to resolution', registry=self.registry)
        self.deployments = Counter('proxy_deploy_contracts_deployed_total', 'Contracts instantiated', ['contract'], registry=self.registry)
        self.cpu_usage = Gauge('process_cpu_percent', 'Current CPU usage percent of this process', registry=self.registry)
        self.memory_usage = Gauge('process_memory_rss_bytes', 'Resident memory of this process', registry=self.registry)
        self.uptime = Gauge('proxy_deploy_uptime_seconds', 'Seconds since the workflow started', registry=self.registry)

        if start_server:
            self.start_server()

    def start_server(self):
        """Creates and starts the Prometheus HTTP server with retry logic."""
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
                if e.errno == 98 and attempt < max_retries - 1:  # Address already in use
                    logger.warning(f"Port {self.port} in use, retrying in {retry_delay}s (attempt {attempt+1}/{max_retries})...")
                    time.sleep(retry_delay)
                else:
                    logger.error(f"Failed to bind metrics server to port {self.port}: {e}")
                    raise

    def stop_server(self):
        """Stops the HTTP server."""
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
            logger.info("Prometheus server stopped.")

    def update(self):
        self.cpu_usage.set(self.process.cpu_percent())
        self.memory_usage.set(self.process.memory_info().rss)
        self.uptime.set(time.time() - self.started_at)

    def record_tx(self, status: str, latency: float):
        self.tx_counter.labels(status=status).inc()
        self.tx_latency.observe(latency)

    def record_deploy(self, contract: str):
        self.deployments.labels(contract=contract).inc()
