"""Tests for guard naming, labelling and ownership."""

import pytest

from disruption_kernel.models import (
    DisruptionManagementSpec,
    ObjectKey,
    ObjectMeta,
    StorageCluster,
    StorageClusterSpec,
)
from disruption_kernel.reconciler.naming import (
    CLUSTER_NAME_LABEL_KEY,
    CLUSTER_NAMESPACE_LABEL_KEY,
    MACHINE_FENCING_LABEL_KEY,
    MACHINE_FENCING_NAMESPACE_LABEL_KEY,
    InvalidGuardError,
    build_guard,
    is_owned_by,
    guard_key,
    guard_name,
    validate_name,
)


def _make_cluster(
    name: str = "rook-ceph",
    namespace: str = "rook-ceph",
    guard_namespace: str = "openshift-machine-api",
) -> StorageCluster:
    return StorageCluster(
        metadata=ObjectMeta(name=name, namespace=namespace, uid="uid-123"),
        spec=StorageClusterSpec(
            disruption_management=DisruptionManagementSpec(
                manage_machine_disruption_budgets=True,
                machine_disruption_budget_namespace=guard_namespace,
            )
        ),
    )


class TestGuardName:
    def test_deterministic(self):
        assert guard_name("rook-ceph", "rook-ceph") == guard_name("rook-ceph", "rook-ceph")
        assert guard_name("rook-ceph", "rook-ceph") == "rook-ceph-rook-ceph-d7bb632812"

    def test_distinct_sources_get_distinct_names(self):
        pairs = [
            ("a", "x"), ("b", "x"), ("a", "y"), ("my-cluster", "prod"),
            ("a-b", "c"), ("a", "b-c"),
        ]
        names = {guard_name(n, ns) for n, ns in pairs}
        assert len(names) == len(pairs)

    def test_dash_split_does_not_collide(self):
        assert guard_name("a-b", "c") == "a-b-c-839c42d957"
        assert guard_name("a", "b-c") == "a-b-c-9bb9abe2f1"

    def test_name_is_a_valid_identifier(self):
        assert validate_name(guard_name("my.store", "rook-ceph"))

    def test_guard_key_lives_in_guard_namespace(self):
        key = guard_key(_make_cluster(guard_namespace="guards"))
        assert key == ObjectKey(namespace="guards", name=guard_name("rook-ceph", "rook-ceph"))


class TestValidation:
    @pytest.mark.parametrize("value", ["a", "rook-ceph", "a.b-c", "x1"])
    def test_valid_names(self, value):
        assert validate_name(value) == value

    @pytest.mark.parametrize("value", ["", "Upper", "under_score", "-lead", "trail-", "a" * 254])
    def test_invalid_names(self, value):
        with pytest.raises(InvalidGuardError):
            validate_name(value)

    def test_empty_guard_namespace_is_invalid(self):
        with pytest.raises(InvalidGuardError):
            guard_key(_make_cluster(guard_namespace=""))


class TestBuildGuard:
    def test_new_guard_starts_closed(self):
        guard = build_guard(_make_cluster())
        assert guard.spec.max_unavailable == 0
        assert guard.metadata.version is None

    def test_labels_and_selector(self):
        guard = build_guard(_make_cluster(name="c1", namespace="ns1"))
        assert guard.metadata.labels == {
            CLUSTER_NAMESPACE_LABEL_KEY: "ns1",
            CLUSTER_NAME_LABEL_KEY: "c1",
        }
        assert guard.spec.selector.match_labels == {
            MACHINE_FENCING_LABEL_KEY: "c1",
            MACHINE_FENCING_NAMESPACE_LABEL_KEY: "ns1",
        }

    def test_owner_reference_points_at_cluster(self):
        guard = build_guard(_make_cluster())
        assert len(guard.metadata.owner_references) == 1
        ref = guard.metadata.owner_references[0]
        assert ref.kind == "CephCluster"
        assert ref.api_version == "ceph.rook.io/v1"
        assert ref.name == "rook-ceph"
        assert ref.uid == "uid-123"
        assert ref.controller is True

    def test_ownership_is_by_uid(self):
        cluster = _make_cluster()
        guard = build_guard(cluster)
        assert is_owned_by(guard, cluster)

        impostor = _make_cluster()
        impostor.metadata.uid = "uid-456"
        assert not is_owned_by(guard, impostor)
