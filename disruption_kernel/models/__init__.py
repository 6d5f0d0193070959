"""Disruption Kernel data models."""

from disruption_kernel.models.cluster import (
    DEFAULT_GUARD_NAMESPACE,
    DisruptionManagementSpec,
    StorageCluster,
    StorageClusterSpec,
)
from disruption_kernel.models.guard import (
    LabelSelector,
    MachineDisruptionBudget,
    MachineDisruptionBudgetSpec,
)
from disruption_kernel.models.health import HealthReport
from disruption_kernel.models.meta import ObjectKey, ObjectMeta, OwnerReference
from disruption_kernel.models.reconciler import ReconcileResult, ReconcilerConfig

__all__ = [
    "DEFAULT_GUARD_NAMESPACE",
    "DisruptionManagementSpec",
    "HealthReport",
    "LabelSelector",
    "MachineDisruptionBudget",
    "MachineDisruptionBudgetSpec",
    "ObjectKey",
    "ObjectMeta",
    "OwnerReference",
    "ReconcileResult",
    "ReconcilerConfig",
    "StorageCluster",
    "StorageClusterSpec",
]
