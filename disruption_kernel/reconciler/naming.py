"""Deterministic naming, labelling and ownership for disruption budgets."""

import hashlib
import re
from typing import Dict

from disruption_kernel.models.cluster import StorageCluster
from disruption_kernel.models.guard import (
    LabelSelector,
    MachineDisruptionBudget,
    MachineDisruptionBudgetSpec,
)
from disruption_kernel.models.meta import ObjectKey, ObjectMeta, OwnerReference

CLUSTER_NAMESPACE_LABEL_KEY = "rook.io/cephClusterNamespace"
CLUSTER_NAME_LABEL_KEY = "rook.io/cephClusterName"

# Labels the machine fencing controller puts on machines of a cluster
MACHINE_FENCING_LABEL_KEY = "fencegroup.rook.io/cluster"
MACHINE_FENCING_NAMESPACE_LABEL_KEY = "fencegroup.rook.io/clusterNamespace"

MAX_NAME_LENGTH = 253
NAME_DIGEST_LENGTH = 10
_DNS_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")


class InvalidGuardError(Exception):
    """A derived guard identity is invalid, or is held by another cluster's budget."""


def validate_name(value: str, what: str = "name") -> str:
    if not value:
        raise InvalidGuardError(f"{what} must not be empty")
    if len(value) > MAX_NAME_LENGTH:
        raise InvalidGuardError(f"{what} {value!r} exceeds {MAX_NAME_LENGTH} characters")
    if not _DNS_SUBDOMAIN.match(value):
        raise InvalidGuardError(f"{what} {value!r} is not a valid DNS subdomain")
    return value


def guard_name(cluster_name: str, cluster_namespace: str) -> str:
    """
    "<name>-<namespace>-<digest>". The digest covers "namespace/name", so
    pairs like ("a-b", "c") and ("a", "b-c") get different names.
    """
    digest = hashlib.sha256(f"{cluster_namespace}/{cluster_name}".encode()).hexdigest()
    return f"{cluster_name}-{cluster_namespace}-{digest[:NAME_DIGEST_LENGTH]}"


def is_owned_by(budget: MachineDisruptionBudget, cluster: StorageCluster) -> bool:
    return any(ref.uid == cluster.metadata.uid for ref in budget.metadata.owner_references)


def guard_key(cluster: StorageCluster) -> ObjectKey:
    """Where the budget for this cluster lives. Raises InvalidGuardError."""
    return ObjectKey(
        namespace=validate_name(cluster.guard_namespace, "guard namespace"),
        name=validate_name(
            guard_name(cluster.metadata.name, cluster.metadata.namespace), "guard name"
        ),
    )


def guard_labels(cluster_key: ObjectKey) -> Dict[str, str]:
    return {
        CLUSTER_NAMESPACE_LABEL_KEY: cluster_key.namespace,
        CLUSTER_NAME_LABEL_KEY: cluster_key.name,
    }


def selector_labels(cluster_key: ObjectKey) -> Dict[str, str]:
    return {
        MACHINE_FENCING_LABEL_KEY: cluster_key.name,
        MACHINE_FENCING_NAMESPACE_LABEL_KEY: cluster_key.namespace,
    }


def owner_reference(cluster: StorageCluster) -> OwnerReference:
    return OwnerReference(
        api_version=cluster.api_version,
        kind=cluster.kind,
        name=cluster.metadata.name,
        uid=cluster.metadata.uid,
    )


def build_guard(cluster: StorageCluster) -> MachineDisruptionBudget:
    """A new budget for the cluster. Always starts closed (max_unavailable=0)."""
    key = guard_key(cluster)
    return MachineDisruptionBudget(
        metadata=ObjectMeta(
            name=key.name,
            namespace=key.namespace,
            labels=guard_labels(cluster.key),
            owner_references=[owner_reference(cluster)],
        ),
        spec=MachineDisruptionBudgetSpec(
            max_unavailable=0,
            selector=LabelSelector(match_labels=selector_labels(cluster.key)),
        ),
    )
