"""
Disruption Guard Reconciler: keeps a cluster's machine disruption budget
in step with the cluster's health.

Every call re-reads all state, so calls are idempotent and replay-safe:
  fetch cluster → feature enabled? → fetch or create budget
    → query health → open (1) or close (0) the budget → requeue

Whenever health is unknown the budget is closed. It is never opened on a
guess.
"""

import logging
from datetime import timedelta
from typing import Optional

from disruption_kernel.entity_store.store import EntityStore, NotFoundError
from disruption_kernel.health.oracle import HealthOracle, OracleUnavailableError
from disruption_kernel.models.cluster import StorageCluster
from disruption_kernel.models.guard import MachineDisruptionBudget
from disruption_kernel.models.meta import ObjectKey
from disruption_kernel.models.reconciler import ReconcileResult, ReconcilerConfig
from disruption_kernel.reconciler.naming import (
    InvalidGuardError,
    build_guard,
    guard_key,
    is_owned_by,
)

logger = logging.getLogger(__name__)

CONTROLLER_NAME = "machinedisruption-controller"


class DisruptionGuardReconciler:
    """Derives and persists the disruption budget for one storage cluster."""

    def __init__(
        self,
        clusters: EntityStore[StorageCluster],
        budgets: EntityStore[MachineDisruptionBudget],
        oracle: HealthOracle,
        config: Optional[ReconcilerConfig] = None,
    ):
        self.clusters = clusters
        self.budgets = budgets
        self.oracle = oracle
        self.config = config if config is not None else ReconcilerConfig()

    @property
    def requeue_after(self) -> timedelta:
        return timedelta(seconds=self.config.requeue_after_seconds)

    def reconcile(self, key: ObjectKey) -> ReconcileResult:
        """
        Reconcile the budget of the cluster identified by key.

        Raises store and oracle errors for the caller to retry with backoff.
        A missing cluster or a disabled feature is a successful no-op.
        A budget owned by another cluster is never written; InvalidGuardError.
        """
        logger.debug("reconciling %s", key)

        try:
            cluster = self.clusters.get(key)
        except NotFoundError:
            logger.info("storage cluster %s not found, nothing to do", key)
            return ReconcileResult()

        if not cluster.disruption_management_enabled:
            logger.debug(
                "skipping %s: machine disruption budget management is turned off", key
            )
            return ReconcileResult()

        budget_key = guard_key(cluster)
        try:
            budget = self.budgets.get(budget_key)
        except NotFoundError:
            self.budgets.create(build_guard(cluster))
            logger.info("created machine disruption budget %s for %s", budget_key, key)
            return ReconcileResult()

        if not is_owned_by(budget, cluster):
            raise InvalidGuardError(
                f"machine disruption budget {budget_key} is not owned by {key} "
                f"(uid {cluster.metadata.uid})"
            )

        stored_value = budget.spec.max_unavailable
        if stored_value is None:
            budget.spec.max_unavailable = 0

        try:
            report = self.oracle.is_cluster_clean(key)
        except Exception as e:
            logger.error("failed to get health of %s: %s", key, e)
            if stored_value != 0:
                self._close_after_oracle_failure(budget)
            if isinstance(e, OracleUnavailableError):
                raise
            raise OracleUnavailableError(key, str(e)) from e

        target = 1 if report.clean else 0
        if budget.spec.max_unavailable != target:
            budget.spec.max_unavailable = target
            self.budgets.update(budget)
            logger.info(
                "set max_unavailable=%d on %s (%s)", target, budget_key, report.details
            )

        return ReconcileResult(requeue=True, requeue_after=self.requeue_after)

    def _close_after_oracle_failure(self, budget: MachineDisruptionBudget) -> None:
        """Best-effort write of max_unavailable=0. Never raises."""
        budget.spec.max_unavailable = 0
        try:
            self.budgets.update(budget)
        except Exception as e:
            logger.error("failed to close machine disruption budget %s: %s", budget.key, e)
