import logging
from kubernetes.client.rest import ApiException
from seldon_ingress.seldon.deployment import SDEP_GROUP, SDEP_VERSION, SDEP_PLURAL

logger = logging.getLogger("seldon-ingress-controller")


def get_ingress(networking_v1, name, namespace):
    """Read an Ingress; None when it does not exist."""
    try:
        return networking_v1.read_namespaced_ingress(name, namespace)
    except ApiException as e:
        if e.status == 404:
            return None
        raise


def create_ingress(networking_v1, namespace, body):
    created = networking_v1.create_namespaced_ingress(namespace, body)
    logger.info("Created ingress", extra={"namespace": namespace, "ingress": body.metadata.name})
    return created


def replace_ingress(networking_v1, name, namespace, body):
    replaced = networking_v1.replace_namespaced_ingress(name, namespace, body)
    logger.info("Replaced ingress", extra={"namespace": namespace, "ingress": name})
    return replaced


def list_seldon_deployments(crd_api, namespace=""):
    if namespace:
        result = crd_api.list_namespaced_custom_object(
            group=SDEP_GROUP, version=SDEP_VERSION, namespace=namespace, plural=SDEP_PLURAL
        )
    else:
        result = crd_api.list_cluster_custom_object(
            group=SDEP_GROUP, version=SDEP_VERSION, plural=SDEP_PLURAL
        )
    return result.get("items", [])


def patch_ingress_status(crd_api, namespace, name, ready, message=""):
    """Record ingress readiness under status.ingress of the SeldonDeployment."""
    body = {"status": {"ingress": {"ready": ready, "message": message}}}
    try:
        crd_api.patch_namespaced_custom_object_status(
            group=SDEP_GROUP, version=SDEP_VERSION, namespace=namespace,
            plural=SDEP_PLURAL, name=name, body=body,
        )
    except Exception as e:
        logger.warning(f"Failed to patch ingress status: {e}", extra={"sdep": name, "namespace": namespace})
        return False
    return True
