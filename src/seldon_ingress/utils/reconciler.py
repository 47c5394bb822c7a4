import time
import traceback
from seldon_ingress.seldon.deployment import SeldonDeployment
from seldon_ingress.seldon.ingress import IngressError, reconcile_ingress
from seldon_ingress.utils.k8s_utils import list_seldon_deployments, patch_ingress_status
from seldon_ingress.utils.metrics import (
    sdep_ingress_ready, sdep_predictors_total,
    reconcile_total, reconcile_duration_seconds,
)

RECONCILE_INTERVAL_DEFAULT = 30


def reconcile(obj, networking_v1, crd_api, defaults, logger):
    """Reconcile the ingress of one SeldonDeployment object. Returns readiness."""
    try:
        sdep = SeldonDeployment.from_dict(obj)
    except ValueError as e:
        logger.error(f"Skipping malformed SeldonDeployment: {e}")
        reconcile_total.labels(namespace="", sdep="", status='invalid').inc()
        return False

    logger.set_context(sdep=sdep.name, namespace=sdep.namespace, ingress="", trace="")
    logger.info("Reconciling ingress")

    start_time = time.time()
    sdep_predictors_total.labels(namespace=sdep.namespace, sdep=sdep.name).set(len(sdep.predictors))

    try:
        ready = reconcile_ingress(networking_v1, sdep, defaults)
        message = ""
    except IngressError as e:
        tb = traceback.format_exc()
        logger.error("Ingress reconciliation failed", extra={"trace": tb})
        ready = False
        message = str(e)
    except Exception as e:
        tb = traceback.format_exc()
        logger.error("Unexpected error reconciling ingress", extra={"trace": tb})
        ready = False
        message = f"{type(e).__name__}: {e}"

    duration = time.time() - start_time
    reconcile_duration_seconds.labels(namespace=sdep.namespace, sdep=sdep.name).observe(duration)
    sdep_ingress_ready.labels(namespace=sdep.namespace, sdep=sdep.name).set(1 if ready else 0)
    reconcile_total.labels(namespace=sdep.namespace, sdep=sdep.name, status='success' if ready else 'error').inc()

    if defaults.enabled:
        patch_ingress_status(crd_api, sdep.namespace, sdep.name, ready, message)
    return ready


def reconcile_all(networking_v1, crd_api, defaults, logger, last_reconcile_time,
                  namespace="", interval=RECONCILE_INTERVAL_DEFAULT, now=None):
    """Run one pass over every SeldonDeployment whose interval has elapsed.

    ``last_reconcile_time`` maps namespace/name to the time of the previous pass
    and is updated in place. Returns False when any deployment is not ready.
    """
    now = time.time() if now is None else now
    all_ready = True
    seen = set()

    for obj in list_seldon_deployments(crd_api, namespace):
        metadata = obj.get("metadata", {})
        key = f"{metadata.get('namespace', '')}/{metadata.get('name', '')}"
        seen.add(key)

        last_ts = last_reconcile_time.get(key, 0)
        if now - last_ts < interval:
            continue

        last_reconcile_time[key] = now
        if not reconcile(obj, networking_v1, crd_api, defaults, logger):
            all_ready = False
            # retry on the next pass rather than waiting a full interval
            last_reconcile_time.pop(key, None)

    for key in list(last_reconcile_time):
        if key not in seen:
            del last_reconcile_time[key]
    return all_ready
