from prometheus_client import Counter, Gauge, Histogram, Info, start_http_server

# ============== Gauges (current state) ==============

sdep_ingress_ready = Gauge(
    'seldon_ingress_ready',
    'Whether the ingress of a SeldonDeployment is converged (1=ready, 0=not ready)',
    ['namespace', 'sdep']
)

sdep_predictors_total = Gauge(
    'seldon_ingress_predictors_total',
    'Number of predictors exposed through the ingress',
    ['namespace', 'sdep']
)

controller_is_leader = Gauge(
    'seldon_ingress_controller_is_leader',
    'Whether this controller instance is the leader (1=leader, 0=not leader)',
    ['pod_name']
)

controller_healthy = Gauge(
    'seldon_ingress_controller_healthy',
    'Whether controller is healthy (1=healthy, 0=unhealthy)',
    ['pod_name']
)

controller_ready = Gauge(
    'seldon_ingress_controller_ready',
    'Whether controller is ready (1=ready, 0=not ready)',
    ['pod_name']
)

# ============== Counters (cumulative) ==============

reconcile_total = Counter(
    'seldon_ingress_reconcile_total',
    'Total number of ingress reconciliation runs',
    ['namespace', 'sdep', 'status']
)

ingress_writes_total = Counter(
    'seldon_ingress_writes_total',
    'Ingress persistence outcomes (create, update, noop)',
    ['action']
)

k8s_api_errors_total = Counter(
    'seldon_ingress_k8s_api_errors_total',
    'Total number of Kubernetes API errors',
    ['operation', 'status']
)

# ============== Histograms (latency) ==============

reconcile_duration_seconds = Histogram(
    'seldon_ingress_reconcile_duration_seconds',
    'Time spent reconciling the ingress of one SeldonDeployment',
    ['namespace', 'sdep'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============== Info ==============

controller_info = Info(
    'seldon_ingress_controller',
    'Controller information'
)


def start_metrics_server(port=9999, logger=None):
    """Start the Prometheus metrics HTTP server."""
    try:
        start_http_server(port)
        if logger:
            logger.info(f"Prometheus metrics server started on port {port}")
    except OSError as e:
        if logger:
            logger.error(f"Failed to start metrics server: {e}")


def set_controller_info(version="1.0.0", pod_name="unknown"):
    controller_info.info({
        'version': version,
        'pod_name': pod_name,
    })
