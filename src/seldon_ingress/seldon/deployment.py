import hashlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

SDEP_GROUP = "machinelearning.seldon.io"
SDEP_VERSION = "v1"
SDEP_PLURAL = "seldondeployments"
SDEP_KIND = "SeldonDeployment"

# Longer combined names are hashed to keep service names under the DNS label limit.
MAX_PREDICTOR_KEY_LEN = 60


@dataclass(frozen=True)
class Predictor:
    name: str


@dataclass(frozen=True)
class SeldonDeployment:
    """Read-only view of a SeldonDeployment custom object."""

    namespace: str
    name: str
    uid: Optional[str] = None
    api_version: str = f"{SDEP_GROUP}/{SDEP_VERSION}"
    kind: str = SDEP_KIND
    predictors: List[Predictor] = field(default_factory=list)
    annotations: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, obj):
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        if not name or not namespace:
            raise ValueError("SeldonDeployment is missing metadata.name or metadata.namespace")

        # spec-level annotations take precedence over object metadata
        annotations = dict(metadata.get("annotations") or {})
        annotations.update(spec.get("annotations") or {})

        predictors = [Predictor(name=p.get("name", "")) for p in spec.get("predictors") or []]
        return cls(
            namespace=namespace,
            name=name,
            uid=metadata.get("uid"),
            api_version=obj.get("apiVersion", f"{SDEP_GROUP}/{SDEP_VERSION}"),
            kind=obj.get("kind", SDEP_KIND),
            predictors=predictors,
            annotations=annotations,
        )


def predictor_service_name(deployment: SeldonDeployment, predictor: Predictor) -> str:
    """Return the Service name the operator creates for a predictor."""
    key = f"{deployment.name}-{predictor.name}"
    if len(deployment.name) + len(predictor.name) > MAX_PREDICTOR_KEY_LEN:
        return "seldon-" + hashlib.md5(key.encode()).hexdigest()
    return key
