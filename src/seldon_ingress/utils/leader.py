"""
Lease based leader election.

Only the replica holding the coordination.k8s.io Lease reconciles, which keeps
writes for any one SeldonDeployment serialized across replicas.
"""

import re
from datetime import datetime, timezone, timedelta
from kubernetes import client
from kubernetes.client.rest import ApiException

RFC3339_RE = re.compile(
    r"^(?P<prefix>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?P<fraction>\.\d+)?(?P<tz>Z|[+-]\d{2}:\d{2})$"
)


def _now(): return datetime.now(timezone.utc)


def parse_renew_time(val):
    if val is None: return None
    if isinstance(val, datetime):
        return val if val.tzinfo else val.replace(tzinfo=timezone.utc)
    m = RFC3339_RE.match(str(val).strip())
    if not m: return None
    prefix, fraction, tz = m.group("prefix"), m.group("fraction") or "", m.group("tz")
    us = (fraction[1:] + "000000")[:6]
    tz = "+00:00" if tz == "Z" else tz
    try:
        return datetime.fromisoformat(prefix + "." + us + tz)
    except ValueError:
        return None


class LeaseElector:
    def __init__(self, coordination_v1, core_v1, identity, namespace,
                 lease_name="seldon-ingress-controller-leader", lease_duration=60,
                 skew_grace=2, logger=None):
        self.coordination_v1 = coordination_v1
        self.core_v1 = core_v1
        self.identity = identity
        self.namespace = namespace
        self.lease_name = lease_name
        self.lease_duration = lease_duration
        self.skew_grace = skew_grace
        self.logger = logger

    @property
    def renew_every(self):
        return max(1, self.lease_duration // 3)

    def _log(self, msg):
        if self.logger:
            self.logger.info(msg)

    def expired(self, renewed_at, duration, now=None):
        if not renewed_at:
            return False
        now = now or _now()
        if renewed_at > now:
            return False
        return now > renewed_at + timedelta(seconds=duration + max(self.skew_grace, 5))

    def _holder_alive(self, holder):
        try:
            self.core_v1.read_namespaced_pod(holder, self.namespace)
            return True
        except ApiException as e:
            return e.status != 404

    def _create(self):
        now = _now()
        body = client.V1Lease(
            metadata=client.V1ObjectMeta(name=self.lease_name, namespace=self.namespace),
            spec=client.V1LeaseSpec(
                holder_identity=self.identity,
                lease_duration_seconds=self.lease_duration,
                acquire_time=now,
                renew_time=now,
                lease_transitions=0,
            ),
        )
        try:
            self.coordination_v1.create_namespaced_lease(self.namespace, body)
        except ApiException as e:
            if e.status == 409:
                return False
            raise
        self._log("Acquired leadership (created lease)")
        return True

    def _take_over(self, lease):
        now = _now()
        lease.spec.holder_identity = self.identity
        lease.spec.acquire_time = now
        lease.spec.renew_time = now
        lease.spec.lease_transitions = (lease.spec.lease_transitions or 0) + 1
        try:
            self.coordination_v1.replace_namespaced_lease(self.lease_name, self.namespace, lease)
        except ApiException as e:
            if e.status == 409:
                return False
            raise
        self._log("Acquired leadership (takeover)")
        return True

    def _renew(self, lease):
        lease.spec.renew_time = _now()
        try:
            self.coordination_v1.replace_namespaced_lease(self.lease_name, self.namespace, lease)
        except ApiException as e:
            if e.status == 409:
                return False
            raise
        return True

    def try_acquire_or_renew(self):
        """Return True when this replica holds the lease after the call."""
        try:
            lease = self.coordination_v1.read_namespaced_lease(self.lease_name, self.namespace)
        except ApiException as e:
            if e.status == 404:
                return self._create()
            raise

        holder = lease.spec.holder_identity or ""
        duration = lease.spec.lease_duration_seconds or self.lease_duration
        expired = self.expired(parse_renew_time(lease.spec.renew_time), duration)

        if holder == self.identity and not expired:
            return self._renew(lease)
        if holder and holder != self.identity and not expired and self._holder_alive(holder):
            return False
        return self._take_over(lease)
