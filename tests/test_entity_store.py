"""Tests for the Entity Store implementations and owner garbage collection."""

import sqlite3

import pytest

from disruption_kernel.entity_store.registry import ObjectRegistry
from disruption_kernel.entity_store.sqlite_store import SQLiteEntityStore
from disruption_kernel.entity_store.store import (
    AlreadyExistsError,
    ConflictError,
    InMemoryEntityStore,
    NotFoundError,
    StoreUnavailableError,
)
from disruption_kernel.models import (
    DisruptionManagementSpec,
    MachineDisruptionBudget,
    MachineDisruptionBudgetSpec,
    ObjectKey,
    ObjectMeta,
    StorageCluster,
    StorageClusterSpec,
)
from disruption_kernel.reconciler.naming import build_guard, guard_name


def _make_budget(name: str = "guard", namespace: str = "ns", max_unavailable: int = 0):
    return MachineDisruptionBudget(
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=MachineDisruptionBudgetSpec(max_unavailable=max_unavailable),
    )


def _make_cluster(name: str, namespace: str = "rook-ceph") -> StorageCluster:
    return StorageCluster(
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=StorageClusterSpec(
            disruption_management=DisruptionManagementSpec(
                manage_machine_disruption_budgets=True,
            )
        ),
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    if request.param == "memory":
        yield InMemoryEntityStore(MachineDisruptionBudget)
    else:
        s = SQLiteEntityStore(MachineDisruptionBudget, db_path=":memory:")
        yield s
        s.close()


class TestEntityStoreContract:
    def test_create_assigns_version_and_uid(self, store):
        created = store.create(_make_budget())
        assert created.metadata.version == 1
        assert created.metadata.uid

    def test_get_missing_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            store.get(ObjectKey(namespace="ns", name="missing"))

    def test_create_twice_raises_already_exists(self, store):
        store.create(_make_budget())
        with pytest.raises(AlreadyExistsError):
            store.create(_make_budget())

    def test_update_bumps_version(self, store):
        created = store.create(_make_budget())
        created.spec.max_unavailable = 1
        updated = store.update(created)
        assert updated.metadata.version == 2

        fetched = store.get(created.key)
        assert fetched.spec.max_unavailable == 1
        assert fetched.metadata.version == 2
        assert fetched.metadata.uid == created.metadata.uid

    def test_stale_update_is_rejected(self, store):
        created = store.create(_make_budget())
        first = store.get(created.key)
        second = store.get(created.key)

        first.spec.max_unavailable = 1
        store.update(first)

        second.metadata.labels = {"stale": "true"}
        with pytest.raises(ConflictError) as exc:
            store.update(second)
        assert exc.value.expected == 1
        assert exc.value.actual == 2

        stored = store.get(created.key)
        assert stored.spec.max_unavailable == 1
        assert stored.metadata.labels == {}

    def test_update_missing_raises_not_found(self, store):
        budget = _make_budget()
        budget.metadata.version = 1
        with pytest.raises(NotFoundError):
            store.update(budget)

    def test_reads_do_not_alias_stored_state(self, store):
        created = store.create(_make_budget())
        fetched = store.get(created.key)
        fetched.spec.max_unavailable = 1
        assert store.get(created.key).spec.max_unavailable == 0

    def test_delete(self, store):
        created = store.create(_make_budget())
        store.delete(created.key)
        with pytest.raises(NotFoundError):
            store.get(created.key)
        with pytest.raises(NotFoundError):
            store.delete(created.key)

    def test_list_filters_by_namespace(self, store):
        store.create(_make_budget(name="a", namespace="ns1"))
        store.create(_make_budget(name="b", namespace="ns1"))
        store.create(_make_budget(name="c", namespace="ns2"))

        assert len(store.list()) == 3
        assert [b.metadata.name for b in store.list("ns1")] == ["a", "b"]
        assert store.list("other") == []


class TestSQLiteEntityStore:
    def test_kinds_share_a_database_without_colliding(self, tmp_path):
        registry = ObjectRegistry.sqlite(str(tmp_path / "entities.db"))
        registry.clusters.create(_make_cluster("same", namespace="ns"))
        registry.budgets.create(_make_budget(name="same", namespace="ns"))

        assert registry.clusters.get(ObjectKey(namespace="ns", name="same")).kind == "CephCluster"
        assert len(registry.budgets.list()) == 1

    def test_state_survives_reopen(self, tmp_path):
        db_path = str(tmp_path / "entities.db")
        first = SQLiteEntityStore(MachineDisruptionBudget, db_path=db_path)
        created = first.create(_make_budget(max_unavailable=1))
        first.close()

        second = SQLiteEntityStore(MachineDisruptionBudget, db_path=db_path)
        fetched = second.get(created.key)
        assert fetched.spec.max_unavailable == 1
        assert fetched.metadata.version == 1
        second.close()

    def test_database_errors_surface_as_store_unavailable(self):
        store = SQLiteEntityStore(MachineDisruptionBudget, db_path=":memory:")
        store.close()
        with pytest.raises(StoreUnavailableError):
            store.get(ObjectKey(namespace="ns", name="guard"))


class TestGarbageCollection:
    def setup_method(self):
        self.registry = ObjectRegistry()

    def test_deleting_cluster_collects_owned_guard(self):
        cluster = self.registry.clusters.create(_make_cluster("c1"))
        guard = self.registry.budgets.create(build_guard(cluster))

        collected = self.registry.delete_cluster(cluster.key)

        assert collected == [guard.key]
        with pytest.raises(NotFoundError):
            self.registry.budgets.get(guard.key)

    def test_other_clusters_guards_survive(self):
        c1 = self.registry.clusters.create(_make_cluster("c1"))
        c2 = self.registry.clusters.create(_make_cluster("c2"))
        self.registry.budgets.create(build_guard(c1))
        g2 = self.registry.budgets.create(build_guard(c2))

        self.registry.delete_cluster(c1.key)

        assert self.registry.budgets.get(g2.key).metadata.name == guard_name("c2", "rook-ceph")

    def test_unowned_budgets_are_left_alone(self):
        cluster = self.registry.clusters.create(_make_cluster("c1"))
        self.registry.budgets.create(_make_budget(name="manual"))

        assert self.registry.delete_cluster(cluster.key) == []
        assert len(self.registry.budgets.list()) == 1

    def test_deleting_missing_cluster_raises(self):
        with pytest.raises(NotFoundError):
            self.registry.delete_cluster(ObjectKey(namespace="ns", name="nope"))
