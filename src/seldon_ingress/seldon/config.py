import os
from dataclasses import dataclass

PATH_TYPE_EXACT = "Exact"
PATH_TYPE_PREFIX = "Prefix"
PATH_TYPE_IMPLEMENTATION_SPECIFIC = "ImplementationSpecific"


def as_bool(v, default=False):
    if isinstance(v, bool): return v
    if v is None: return default
    return str(v).strip().lower() in ("1", "true", "yes", "y", "on")


@dataclass(frozen=True)
class IngressDefaults:
    """Process-wide ingress defaults, read once at startup."""

    enabled: bool = False
    class_name: str = ""
    host: str = ""
    path_type: str = PATH_TYPE_IMPLEMENTATION_SPECIFIC
    # grpc requests arrive on /<package>.<Service>/<Method>, which only a prefix match on / covers
    grpc_path_type: str = PATH_TYPE_PREFIX
    grpc_enabled: bool = True
    path_prefix_enabled: bool = False

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        path_type = env.get("KUBERNETES_INGRESS_PATH_TYPE", PATH_TYPE_IMPLEMENTATION_SPECIFIC)
        return cls(
            enabled=as_bool(env.get("KUBERNETES_INGRESS_ENABLED"), False),
            class_name=env.get("KUBERNETES_INGRESS_CLASS_NAME", ""),
            host=env.get("KUBERNETES_INGRESS_HOST", ""),
            path_type=path_type,
            grpc_path_type=env.get("KUBERNETES_INGRESS_GRPC_PATH_TYPE", PATH_TYPE_PREFIX),
            grpc_enabled=as_bool(env.get("KUBERNETES_INGRESS_GRPC_ENABLED"), True),
            path_prefix_enabled=as_bool(env.get("KUBERNETES_INGRESS_PATH_PREFIX_ENABLED"), False),
        )
