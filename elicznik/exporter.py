"""Prometheus metrics exporter module.

This module handles:
- Defining Prometheus metrics for import runs (gauges)
- Exposing metrics HTTP server on configurable port (daemon mode)
- Updating metrics with decoded readings and database write results
"""

import logging
import time
from typing import Dict, Optional

from prometheus_client import Gauge, start_http_server, REGISTRY, CollectorRegistry

from elicznik.database import WriteResult
from elicznik.tauron_parser import Direction, TauronData

# Configure module logger
logger = logging.getLogger(__name__)


class MetricsExporter:
    """Prometheus exporter for elicznik import runs.

    Exposes the following metrics:
    - elicznik_run_success: Whether the last run succeeded (1=success, 0=failure)
    - elicznik_run_timestamp: Unix timestamp of the last run
    - elicznik_run_duration_seconds: Duration of the last run
    - elicznik_readings_decoded: Readings decoded in the last run, per direction
    - elicznik_rows_inserted / _updated / _failed: Write results per direction
    - elicznik_last_reading_timestamp: Newest reading seen, per direction

    Attributes:
        port: HTTP server port (default 9120)
    """

    def __init__(self, port: int = 9120, registry: Optional[CollectorRegistry] = None):
        """Initialize the exporter.

        Args:
            port: Port to run the HTTP server on
            registry: Optional custom registry for testing. If None, uses default REGISTRY.
        """
        self.port = port
        self._registry = registry if registry is not None else REGISTRY
        self._server_started = False

        self._run_success = Gauge(
            'elicznik_run_success',
            'Whether the last run succeeded (1=success, 0=failure)',
            registry=self._registry
        )

        self._run_timestamp = Gauge(
            'elicznik_run_timestamp',
            'Unix timestamp of the last run',
            registry=self._registry
        )

        self._run_duration = Gauge(
            'elicznik_run_duration_seconds',
            'Duration of the last run in seconds',
            registry=self._registry
        )

        self._readings_decoded = Gauge(
            'elicznik_readings_decoded',
            'Number of readings decoded in the last run',
            ['direction'],
            registry=self._registry
        )

        self._rows = {
            kind: Gauge(
                f'elicznik_rows_{kind}',
                f'Number of database rows {kind} in the last run',
                ['direction'],
                registry=self._registry
            )
            for kind in ('inserted', 'updated', 'failed')
        }

        self._last_reading = Gauge(
            'elicznik_last_reading_timestamp',
            'Unix timestamp of the newest reading seen',
            ['direction'],
            registry=self._registry
        )

    def update_readings(self, data: TauronData) -> None:
        """Update decoded-reading metrics.

        Args:
            data: Decoded provider data
        """
        for direction in Direction:
            batch = data.batch(direction)
            self._readings_decoded.labels(direction=direction.value).set(len(batch))
            if batch:
                newest = max(r.timestamp for r in batch)
                self._last_reading.labels(direction=direction.value).set(newest.timestamp())

    def update_results(self, results: Dict[Direction, WriteResult]) -> None:
        """Update database write metrics.

        Args:
            results: WriteResult per direction
        """
        for direction, result in results.items():
            self._rows['inserted'].labels(direction=direction.value).set(result.inserted)
            self._rows['updated'].labels(direction=direction.value).set(result.updated)
            self._rows['failed'].labels(direction=direction.value).set(result.failed)

    def set_run_success(self, success: bool, duration: float) -> None:
        """Update operational metrics after a run.

        Args:
            success: Whether the run succeeded
            duration: How long the run took in seconds
        """
        self._run_success.set(1 if success else 0)
        self._run_timestamp.set(time.time())
        self._run_duration.set(duration)

    def start(self) -> None:
        """Start the HTTP server to expose metrics.

        The server runs in a daemon thread and exposes metrics at:
        http://localhost:{port}/metrics
        """
        if self._server_started:
            logger.warning("Prometheus server already started")
            return

        logger.info(f"Starting Prometheus HTTP server on port {self.port}")
        start_http_server(self.port, registry=self._registry)
        self._server_started = True
