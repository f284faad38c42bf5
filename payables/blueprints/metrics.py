"""
Prometheus metrics blueprint.

/metrics serves request latency/counts and the invoice lifecycle counters that
the services increment. Not authenticated: expose it to the monitoring network only.
"""
import os
import time

from flask import Blueprint, Response, request, g
from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry, REGISTRY, CONTENT_TYPE_LATEST, generate_latest, multiprocess
)

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share counters through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = REGISTRY

SKIPPED_ENDPOINTS = ('metrics.metrics', 'static')

# HTTP
http_requests_total = Counter(
    'payables_http_requests_total',
    'HTTP requests by endpoint and status',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'payables_http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_requests_in_flight = Gauge(
    'payables_http_requests_in_flight',
    'Requests currently being handled',
    registry=_metric_registry,
    multiprocess_mode='livesum'
)

# Invoice lifecycle
invoice_transitions_total = Counter(
    'payables_invoice_transitions_total',
    'Invoice lifecycle actions that completed',
    ['action'],
    registry=_metric_registry
)

payments_recorded_total = Counter(
    'payables_payments_recorded_total',
    'Payments recorded against invoices',
    registry=_metric_registry
)

payment_rejections_total = Counter(
    'payables_payment_rejections_total',
    'Payments refused because they exceeded the remaining balance',
    registry=_metric_registry
)

credit_notes_recorded_total = Counter(
    'payables_credit_notes_recorded_total',
    'Credit notes recorded against invoices',
    registry=_metric_registry
)

invoices_purged_total = Counter(
    'payables_invoices_purged_total',
    'Invoices handled by the purge sweep',
    ['result'],
    registry=_metric_registry
)


def setup_metrics_instrumentation(app):
    """Time every request and count it by endpoint and status."""

    @app.before_request
    def start_request_timer():
        if request.endpoint in SKIPPED_ENDPOINTS:
            return
        g._metrics_started = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def record_request_metrics(response):
        started = g.pop('_metrics_started', None)
        if started is None:
            return response
        endpoint = request.endpoint or 'unknown'
        try:
            http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(
                time.perf_counter() - started
            )
            http_requests_total.labels(
                method=request.method, endpoint=endpoint, http_status=response.status_code
            ).inc()
        except Exception as e:
            app.logger.warning(f"Failed to record metrics: {e}")
        finally:
            http_requests_in_flight.dec()
        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus text exposition."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
