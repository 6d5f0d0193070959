"""Storage Cluster: the source object a disruption guard is derived from."""

from pydantic import BaseModel

from disruption_kernel.models.meta import ObjectKey, ObjectMeta

DEFAULT_GUARD_NAMESPACE = "openshift-machine-api"


class DisruptionManagementSpec(BaseModel):
    """Per-cluster switches for disruption budget management."""

    manage_machine_disruption_budgets: bool = False
    machine_disruption_budget_namespace: str = DEFAULT_GUARD_NAMESPACE


class StorageClusterSpec(BaseModel):
    disruption_management: DisruptionManagementSpec = DisruptionManagementSpec()


class StorageCluster(BaseModel):
    """
    A storage cluster instance. Owned by an external controller;
    the disruption reconciler only reads it.
    """

    kind: str = "CephCluster"
    api_version: str = "ceph.rook.io/v1"
    metadata: ObjectMeta
    spec: StorageClusterSpec = StorageClusterSpec()

    @property
    def key(self) -> ObjectKey:
        return self.metadata.key

    @property
    def disruption_management_enabled(self) -> bool:
        return self.spec.disruption_management.manage_machine_disruption_budgets

    @property
    def guard_namespace(self) -> str:
        return self.spec.disruption_management.machine_disruption_budget_namespace
