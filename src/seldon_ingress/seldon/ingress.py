"""
Ingress reconciliation for SeldonDeployments.

The desired Ingress is derived from the deployment on every call and converged
onto whatever is currently stored in the cluster:

    fetch_or_default -> converge_ingress (pure) -> persist_if_changed

Nothing is cached between calls.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from seldon_ingress.seldon.config import IngressDefaults
from seldon_ingress.seldon.deployment import SeldonDeployment, predictor_service_name
from seldon_ingress.utils import k8s_utils
from seldon_ingress.utils.metrics import ingress_writes_total, k8s_api_errors_total

logger = logging.getLogger("seldon-ingress-controller")

ANNOTATION_INGRESS_CLASS_NAME = "seldon.io/ingress-class-name"
ANNOTATION_INGRESS_HOST = "seldon.io/ingress-host"
ANNOTATION_INGRESS_PATH = "seldon.io/ingress-path"
ANNOTATION_INGRESS_PATH_TYPE = "seldon.io/ingress-path-type"

# https://github.com/kubernetes/ingress-nginx/blob/main/docs/user-guide/nginx-configuration/annotations.md#backend-protocol
ANNOTATION_BACKEND_PROTOCOL = "nginx.ingress.kubernetes.io/backend-protocol"
ANNOTATION_REWRITE_TARGET = "nginx.ingress.kubernetes.io/rewrite-target"


@dataclass(frozen=True)
class Protocol:
    name: str
    port_name: str


HTTP = Protocol(name="http", port_name="http")
GRPC = Protocol(name="grpc", port_name="grpc")

# pathType is required by the generated model; an empty resolved value leaves it unset.
# local_vars_configuration exists on the pre-pydantic models only, hence kubernetes<37.
_PATH_CONFIGURATION = client.Configuration()
_PATH_CONFIGURATION.client_side_validation = False


class IngressError(Exception):
    """Base class for ingress reconciliation failures."""


class IngressPersistError(IngressError):
    def __init__(self, namespace, name, cause):
        super().__init__(f"failed to persist ingress {namespace}/{name}: {cause}")
        self.namespace = namespace
        self.name = name
        self.cause = cause


class OwnerReferenceError(IngressError):
    pass


@dataclass(frozen=True)
class IngressConfig:
    """Effective settings for one deployment, annotations layered over defaults."""

    enabled: bool
    class_name: str
    host: str
    base_path: str
    path_type: str


# ---------------- Config resolution ----------------

def resolve(deployment: SeldonDeployment, annotation_key: str, default: str) -> str:
    value = deployment.annotations.get(annotation_key)
    return value if value else default


def ingress_path_prefix(deployment: SeldonDeployment) -> str:
    return f"/{deployment.namespace}/{deployment.name}/"


def resolve_config(deployment: SeldonDeployment, defaults: IngressDefaults, protocol: Protocol = HTTP) -> IngressConfig:
    default_base_path = ingress_path_prefix(deployment) if defaults.path_prefix_enabled else ""
    default_path_type = defaults.path_type if protocol == HTTP else defaults.grpc_path_type
    return IngressConfig(
        enabled=defaults.enabled,
        class_name=resolve(deployment, ANNOTATION_INGRESS_CLASS_NAME, defaults.class_name),
        host=resolve(deployment, ANNOTATION_INGRESS_HOST, defaults.host),
        base_path=resolve(deployment, ANNOTATION_INGRESS_PATH, default_base_path),
        path_type=resolve(deployment, ANNOTATION_INGRESS_PATH_TYPE, default_path_type),
    )


# ---------------- Desired state ----------------

def ingress_name(deployment: SeldonDeployment, protocol: Protocol) -> str:
    if protocol == HTTP:
        return deployment.name
    return f"{deployment.name}-{protocol.name}"


def ingress_annotations(deployment: SeldonDeployment, protocol: Protocol):
    annotations = dict(deployment.annotations)
    annotations[ANNOTATION_BACKEND_PROTOCOL] = protocol.name.upper()
    # nginx rejects grpc backends that carry an http rewrite
    if protocol != HTTP:
        annotations.pop(ANNOTATION_REWRITE_TARGET, None)
    return annotations


def build_desired_ingress(deployment: SeldonDeployment, config: IngressConfig, protocol: Protocol) -> Optional[client.V1Ingress]:
    """Build the Ingress a deployment should have for one protocol, or None."""
    if not config.enabled or not deployment.predictors:
        return None

    paths = []
    for predictor in deployment.predictors:
        paths.append(client.V1HTTPIngressPath(
            path="/",
            path_type=config.path_type or None,
            backend=client.V1IngressBackend(
                service=client.V1IngressServiceBackend(
                    name=predictor_service_name(deployment, predictor),
                    port=client.V1ServiceBackendPort(name=protocol.port_name),
                )
            ),
            local_vars_configuration=_PATH_CONFIGURATION,
        ))
    if protocol == HTTP and config.base_path:
        paths[0].path = config.base_path

    rule = client.V1IngressRule(
        host=config.host or None,
        http=client.V1HTTPIngressRuleValue(paths=paths),
    )
    return client.V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=client.V1ObjectMeta(
            name=ingress_name(deployment, protocol),
            namespace=deployment.namespace,
            annotations=ingress_annotations(deployment, protocol),
        ),
        spec=client.V1IngressSpec(
            ingress_class_name=config.class_name or None,
            rules=[rule],
        ),
    )


def owner_reference(deployment: SeldonDeployment) -> client.V1OwnerReference:
    if not deployment.uid or not deployment.api_version or not deployment.kind:
        raise OwnerReferenceError(
            f"cannot link ingress to {deployment.namespace}/{deployment.name}: "
            "owner is missing uid, apiVersion or kind"
        )
    return client.V1OwnerReference(
        api_version=deployment.api_version,
        kind=deployment.kind,
        name=deployment.name,
        uid=deployment.uid,
        block_owner_deletion=True,
    )


# ---------------- Convergence ----------------

def fetch_or_default(api, namespace: str, name: str) -> Optional[client.V1Ingress]:
    """Return the stored Ingress, or None when it does not exist yet."""
    return k8s_utils.get_ingress(api, name, namespace)


def converge_ingress(current: Optional[client.V1Ingress], desired: client.V1Ingress,
                     owner: client.V1OwnerReference) -> client.V1Ingress:
    """Return a copy of ``current`` rewritten to match ``desired``.

    Annotations, rules and class name are replaced wholesale so nothing from an
    older revision survives. Other spec fields and owner references belonging to
    other owners are kept.
    """
    if current is None:
        result = client.V1Ingress(
            api_version="networking.k8s.io/v1",
            kind="Ingress",
            metadata=client.V1ObjectMeta(
                name=desired.metadata.name,
                namespace=desired.metadata.namespace,
            ),
        )
    else:
        result = copy.deepcopy(current)

    result.metadata.annotations = dict(desired.metadata.annotations or {})

    others = [
        ref for ref in (result.metadata.owner_references or [])
        if ref.uid != owner.uid and not (ref.kind == owner.kind and ref.name == owner.name)
    ]
    result.metadata.owner_references = others + [owner]

    # tls and defaultBackend belong to whoever set them
    if result.spec is None:
        result.spec = client.V1IngressSpec()
    result.spec.rules = copy.deepcopy(desired.spec.rules)
    result.spec.ingress_class_name = desired.spec.ingress_class_name
    return result


def _comparable(ingress: Optional[client.V1Ingress]):
    if ingress is None:
        return None
    owners = [ref.to_dict() for ref in ingress.metadata.owner_references or []]
    return {
        "annotations": ingress.metadata.annotations or {},
        "owner_references": owners,
        "spec": ingress.spec.to_dict() if ingress.spec else None,
    }


def persist_if_changed(api, current: Optional[client.V1Ingress], converged: client.V1Ingress) -> str:
    """Write ``converged`` if it differs from ``current``. Returns the action taken."""
    name, namespace = converged.metadata.name, converged.metadata.namespace
    if current is None:
        k8s_utils.create_ingress(api, namespace, converged)
        return "create"
    if _comparable(current) == _comparable(converged):
        return "noop"
    k8s_utils.replace_ingress(api, name, namespace, converged)
    return "update"


def apply_ingress(api, desired: client.V1Ingress, owner: client.V1OwnerReference) -> bool:
    name, namespace = desired.metadata.name, desired.metadata.namespace
    try:
        current = fetch_or_default(api, namespace, name)
        converged = converge_ingress(current, desired, owner)
        action = persist_if_changed(api, current, converged)
    except ApiException as e:
        k8s_api_errors_total.labels(operation="ingress", status=str(e.status)).inc()
        raise IngressPersistError(namespace, name, e) from e
    except Exception as e:
        # connection resets, timeouts and retries exhausted inside urllib3
        k8s_api_errors_total.labels(operation="ingress", status=type(e).__name__).inc()
        raise IngressPersistError(namespace, name, e) from e

    ingress_writes_total.labels(action=action).inc()
    if action == "noop":
        logger.debug("Ingress already converged", extra={"namespace": namespace, "ingress": name})
    return True


def reconcile_ingress(api, deployment: SeldonDeployment, defaults: IngressDefaults) -> bool:
    """Converge the HTTP (and gRPC) Ingress of one deployment.

    Returns True when every ingress is in place, or when ingress management is
    disabled. Raises IngressError on the first failure.
    """
    if not defaults.enabled:
        return True

    protocols = [HTTP, GRPC] if defaults.grpc_enabled else [HTTP]
    owner = None
    for protocol in protocols:
        desired = build_desired_ingress(deployment, resolve_config(deployment, defaults, protocol), protocol)
        if desired is None:
            continue
        if owner is None:
            owner = owner_reference(deployment)
        apply_ingress(api, desired, owner)
    return True
