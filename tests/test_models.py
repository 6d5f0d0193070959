"""Tests for core data models."""

import pytest
from pydantic import ValidationError

from disruption_kernel.models import (
    DEFAULT_GUARD_NAMESPACE,
    DisruptionManagementSpec,
    MachineDisruptionBudget,
    MachineDisruptionBudgetSpec,
    ObjectKey,
    ObjectMeta,
    ReconcileResult,
    ReconcilerConfig,
    StorageCluster,
    StorageClusterSpec,
)


class TestObjectKey:
    def test_string_form(self):
        assert str(ObjectKey(namespace="rook-ceph", name="my-cluster")) == "rook-ceph/my-cluster"

    def test_hashable_and_equal_by_value(self):
        a = ObjectKey(namespace="ns", name="a")
        b = ObjectKey(namespace="ns", name="a")
        assert a == b
        assert len({a, b}) == 1

    def test_frozen(self):
        key = ObjectKey(namespace="ns", name="a")
        with pytest.raises(ValidationError):
            key.name = "b"


class TestStorageCluster:
    def test_feature_off_by_default(self):
        cluster = StorageCluster(metadata=ObjectMeta(name="c", namespace="ns"))
        assert cluster.disruption_management_enabled is False
        assert cluster.guard_namespace == DEFAULT_GUARD_NAMESPACE

    def test_enabled_with_custom_namespace(self):
        cluster = StorageCluster(
            metadata=ObjectMeta(name="c", namespace="ns"),
            spec=StorageClusterSpec(
                disruption_management=DisruptionManagementSpec(
                    manage_machine_disruption_budgets=True,
                    machine_disruption_budget_namespace="guards",
                )
            ),
        )
        assert cluster.disruption_management_enabled is True
        assert cluster.guard_namespace == "guards"
        assert cluster.key == ObjectKey(namespace="ns", name="c")

    def test_default_specs_are_not_shared(self):
        a = StorageCluster(metadata=ObjectMeta(name="a", namespace="ns"))
        b = StorageCluster(metadata=ObjectMeta(name="b", namespace="ns"))
        a.spec.disruption_management.manage_machine_disruption_budgets = True
        assert b.disruption_management_enabled is False


class TestMachineDisruptionBudget:
    def test_unset_budget_blocks_disruption(self):
        budget = MachineDisruptionBudget(metadata=ObjectMeta(name="g", namespace="ns"))
        assert budget.spec.max_unavailable is None
        assert budget.disruption_allowed is False

    def test_open_budget_allows_disruption(self):
        budget = MachineDisruptionBudget(
            metadata=ObjectMeta(name="g", namespace="ns"),
            spec=MachineDisruptionBudgetSpec(max_unavailable=1),
        )
        assert budget.disruption_allowed is True

    @pytest.mark.parametrize("value", [-1, 2, 5])
    def test_max_unavailable_limited_to_zero_or_one(self, value):
        with pytest.raises(ValidationError):
            MachineDisruptionBudgetSpec(max_unavailable=value)

    def test_json_round_trip_keeps_version(self):
        budget = MachineDisruptionBudget(
            metadata=ObjectMeta(name="g", namespace="ns", version=7),
            spec=MachineDisruptionBudgetSpec(max_unavailable=0),
        )
        restored = MachineDisruptionBudget.model_validate_json(budget.model_dump_json())
        assert restored == budget


class TestReconcilerConfig:
    def test_defaults(self):
        config = ReconcilerConfig()
        assert config.requeue_after_seconds == 60
        assert config.max_concurrent_reconciles == 1

    def test_rejects_zero_workers(self):
        with pytest.raises(ValidationError):
            ReconcilerConfig(max_concurrent_reconciles=0)

    def test_result_defaults_to_no_requeue(self):
        result = ReconcileResult()
        assert result.requeue is False
        assert result.requeue_after is None
