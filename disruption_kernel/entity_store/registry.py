"""
Object Registry: the set of kind-specific stores a controller works against.

Implements the garbage-collection contract the reconciler relies on:
deleting a storage cluster deletes every disruption budget that carries an
owner reference to it. The reconciler itself never deletes a guard.
"""

import logging
from typing import List, Optional

from disruption_kernel.entity_store.sqlite_store import SQLiteEntityStore, connect
from disruption_kernel.entity_store.store import (
    EntityStore,
    InMemoryEntityStore,
    NotFoundError,
)
from disruption_kernel.models.cluster import StorageCluster
from disruption_kernel.models.guard import MachineDisruptionBudget
from disruption_kernel.models.meta import ObjectKey

logger = logging.getLogger(__name__)


class ObjectRegistry:
    """Storage clusters plus the disruption budgets they own."""

    def __init__(
        self,
        clusters: Optional[EntityStore[StorageCluster]] = None,
        budgets: Optional[EntityStore[MachineDisruptionBudget]] = None,
    ):
        if clusters is None:
            clusters = InMemoryEntityStore(StorageCluster, "CephCluster")
        if budgets is None:
            budgets = InMemoryEntityStore(MachineDisruptionBudget, "MachineDisruptionBudget")
        self.clusters = clusters
        self.budgets = budgets

    @classmethod
    def sqlite(cls, db_path: str = ":memory:") -> "ObjectRegistry":
        """Registry whose stores share a single SQLite database."""
        conn = connect(db_path)
        return cls(
            clusters=SQLiteEntityStore(
                StorageCluster, "CephCluster", db_path=db_path, conn=conn
            ),
            budgets=SQLiteEntityStore(
                MachineDisruptionBudget, "MachineDisruptionBudget",
                db_path=db_path, conn=conn,
            ),
        )

    def delete_cluster(self, key: ObjectKey) -> List[ObjectKey]:
        """
        Delete a storage cluster and cascade to the budgets it owns.
        Returns the keys of the collected budgets.
        """
        cluster = self.clusters.get(key)
        self.clusters.delete(key)
        return self.collect_garbage(cluster.metadata.uid)

    def collect_garbage(self, owner_uid: str) -> List[ObjectKey]:
        """Delete every budget owned by owner_uid."""
        collected = []
        for budget in self.budgets.list():
            if not any(ref.uid == owner_uid for ref in budget.metadata.owner_references):
                continue
            try:
                self.budgets.delete(budget.key)
            except NotFoundError:
                continue
            logger.info("garbage collected %s owned by %s", budget.key, owner_uid)
            collected.append(budget.key)
        return collected
