import os
import time
import random
import threading
import signal
import sys
from datetime import datetime, timezone
from kubernetes import client, config
from seldon_ingress.seldon.config import IngressDefaults
from seldon_ingress.utils.health_server import start_health_server, controller_state
from seldon_ingress.utils.leader import LeaseElector
from seldon_ingress.utils.log import ContextLoggerAdapter, setup_logging
from seldon_ingress.utils.reconciler import reconcile_all, RECONCILE_INTERVAL_DEFAULT
from seldon_ingress.utils.metrics import (
    start_metrics_server, set_controller_info,
    controller_is_leader, controller_healthy, controller_ready
)

# ---------------- Constants ----------------

LEASE_NAME = os.getenv("LEASE_NAME", "seldon-ingress-controller-leader")
LEASE_DURATION = int(os.getenv("LEASE_DURATION", "60"))
SKEW_GRACE = int(os.getenv("LEASE_SKEW_GRACE_SEC", "2"))
CONTROLLER_VERSION = os.getenv("CONTROLLER_VERSION", "1.0.0")
METRICS_PORT = int(os.getenv("METRICS_PORT", "9999"))
HEALTH_PORT = int(os.getenv("HEALTH_PORT", "8080"))
WATCH_NAMESPACE = os.getenv("WATCH_NAMESPACE", "")
RECONCILE_INTERVAL = int(os.getenv("RECONCILE_INTERVAL", str(RECONCILE_INTERVAL_DEFAULT)))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SA_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"


def _now(): return datetime.now(timezone.utc)


def load_kube_config(logger):
    try:
        config.load_incluster_config()
        logger.info("Using in-cluster config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Using local kubeconfig")


def own_namespace():
    try:
        with open(SA_NAMESPACE_FILE) as f:
            return f.read().strip()
    except OSError:
        return "default"


def own_identity():
    # the downward API sets POD_NAME; the hostname matches it inside a pod
    return os.getenv("POD_NAME") or os.uname()[1]


class Controller:
    def __init__(self, logger, elector, networking_v1, crd_api, defaults, pod_name, state=None):
        self.logger = logger
        self.elector = elector
        self.networking_v1 = networking_v1
        self.crd_api = crd_api
        self.defaults = defaults
        self.pod_name = pod_name
        self.last_reconcile_time = {}
        self.state = state or controller_state

    def update_metrics(self):
        s = self.state.snapshot()
        controller_is_leader.labels(pod_name=self.pod_name).set(1 if s["leader"] else 0)
        controller_healthy.labels(pod_name=self.pod_name).set(1 if s["healthy"] else 0)
        controller_ready.labels(pod_name=self.pod_name).set(1 if self.state.ready else 0)

    def lease_loop(self):
        while True:
            self.lease_tick()
            time.sleep(self.elector.renew_every * random.uniform(0.8, 1.2))

    def lease_tick(self):
        try:
            is_leader = self.elector.try_acquire_or_renew()
        except Exception as e:
            self.logger.error(f"Lease renewal error: {e}")
            is_leader = False
        if self.state.snapshot()["leader"] != is_leader:
            self.logger.info(f"Leadership changed: leader={is_leader}")
        self.state.update(leader=is_leader, bootstrapped=True, lease_loop_last_tick=_now())
        self.update_metrics()

    def run_once(self):
        if not self.state.snapshot()["leader"]:
            self.last_reconcile_time.clear()
            self.state.update(last_pass_failed=False, last_reconcile_ok=None)
            return
        try:
            reconcile_all(
                self.networking_v1, self.crd_api, self.defaults, self.logger,
                self.last_reconcile_time, namespace=WATCH_NAMESPACE, interval=RECONCILE_INTERVAL,
            )
            self.state.update(last_pass_failed=False, last_reconcile_ok=_now())
        except Exception as e:
            self.logger.set_context(sdep="", namespace="", ingress="")
            self.logger.error(f"Reconciliation pass failed: {e}")
            self.state.update(last_pass_failed=True)

    def run(self):
        while True:
            self.run_once()
            self.update_metrics()
            time.sleep(5)


def main():
    base_logger = setup_logging(LOG_LEVEL)
    identity = own_identity()
    logger = ContextLoggerAdapter(base_logger, identity)

    load_kube_config(logger)
    defaults = IngressDefaults.from_env()
    logger.info(
        f"Ingress defaults: enabled={defaults.enabled} class={defaults.class_name!r} "
        f"host={defaults.host!r} pathType={defaults.path_type} grpc={defaults.grpc_enabled}"
    )

    elector = LeaseElector(
        client.CoordinationV1Api(), client.CoreV1Api(), identity, own_namespace(),
        lease_name=LEASE_NAME, lease_duration=LEASE_DURATION, skew_grace=SKEW_GRACE, logger=logger,
    )
    controller = Controller(
        logger, elector, client.NetworkingV1Api(), client.CustomObjectsApi(), defaults, identity,
    )

    controller_state.update(
        healthy=True,
        leader=False,
        bootstrapped=False,
        lease_duration_seconds=LEASE_DURATION,
        reconcile_interval_seconds=RECONCILE_INTERVAL,
    )
    start_health_server(port=HEALTH_PORT, logger=logger)
    start_metrics_server(port=METRICS_PORT, logger=logger)
    set_controller_info(version=CONTROLLER_VERSION, pod_name=identity)

    def shutdown_handler(signum, frame):
        logger.info("Shutdown initiated")
        controller_state.update(healthy=False, leader=False)
        controller.update_metrics()
        sys.exit(0)

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    threading.Thread(target=controller.lease_loop, name="lease-loop", daemon=True).start()
    controller.run()


if __name__ == "__main__":
    main()
