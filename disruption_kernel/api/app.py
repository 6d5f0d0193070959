"""
Disruption Kernel API: FastAPI endpoints.

Exposes the controller for operation and testing:
- Storage cluster management (stand-in for the external cluster controller)
- Disruption budget inspection
- On-demand reconciliation
- Reconciler status and configuration
- Health inspection and simulation
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from disruption_kernel.entity_store.registry import ObjectRegistry
from disruption_kernel.entity_store.store import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreUnavailableError,
)
from disruption_kernel.health.oracle import (
    HealthOracle,
    OracleUnavailableError,
    StaticHealthOracle,
)
from disruption_kernel.logging_config import setup_logging
from disruption_kernel.models.cluster import (
    DEFAULT_GUARD_NAMESPACE,
    DisruptionManagementSpec,
    StorageCluster,
    StorageClusterSpec,
)
from disruption_kernel.models.meta import ObjectKey, ObjectMeta
from disruption_kernel.models.reconciler import ReconcilerConfig
from disruption_kernel.reconciler.disruption import DisruptionGuardReconciler
from disruption_kernel.reconciler.loop import ControllerLoop
from disruption_kernel.reconciler.naming import InvalidGuardError, guard_key

logger = logging.getLogger(__name__)


# --- Request/Response Models ---

class ClusterUpsertRequest(BaseModel):
    manage_machine_disruption_budgets: bool = False
    machine_disruption_budget_namespace: str = DEFAULT_GUARD_NAMESPACE
    labels: Dict[str, str] = {}


class HealthOverrideRequest(BaseModel):
    clean: Optional[bool] = None
    error: Optional[str] = None


class ReconcileResponse(BaseModel):
    requeue: bool
    requeue_after_seconds: Optional[float] = None


def _error_response(e: Exception) -> HTTPException:
    """Map a reconcile failure to an HTTP error carrying its kind."""
    if isinstance(e, ConflictError):
        return HTTPException(409, {"kind": "Conflict", "message": str(e)})
    if isinstance(e, OracleUnavailableError):
        return HTTPException(503, {"kind": "OracleUnavailable", "message": str(e)})
    if isinstance(e, InvalidGuardError):
        return HTTPException(422, {"kind": "Invalid", "message": str(e)})
    return HTTPException(503, {"kind": "StoreUnavailable", "message": str(e)})


# --- Application Factory ---

def create_app(
    registry: Optional[ObjectRegistry] = None,
    oracle: Optional[HealthOracle] = None,
    reconciler_config: Optional[ReconcilerConfig] = None,
    run_controller: bool = False,
    log_component: Optional[str] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    With log_component set, process logging is configured at startup,
    not when the app is built.
    """

    reg = registry if registry is not None else ObjectRegistry()
    health = oracle if oracle is not None else StaticHealthOracle()
    config = reconciler_config if reconciler_config is not None else ReconcilerConfig()

    reconciler = DisruptionGuardReconciler(
        clusters=reg.clusters,
        budgets=reg.budgets,
        oracle=health,
        config=config,
    )
    controller = ControllerLoop(reconciler, config=config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if log_component:
            setup_logging(log_component)
        if not run_controller:
            yield
            return
        stop_event = asyncio.Event()
        task = asyncio.create_task(controller.run_async(stop_event))
        try:
            yield
        finally:
            stop_event.set()
            await task

    app = FastAPI(
        title="Disruption Kernel API",
        description="Machine disruption budget controller for storage clusters",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store components on app state for access in endpoints
    app.state.registry = reg
    app.state.oracle = health
    app.state.reconciler = reconciler
    app.state.controller = controller

    # === STORAGE CLUSTERS ===

    @app.put("/clusters/{namespace}/{name}")
    def upsert_cluster(namespace: str, name: str, req: ClusterUpsertRequest):
        """Create or update a storage cluster and trigger a reconcile."""
        key = ObjectKey(namespace=namespace, name=name)
        spec = StorageClusterSpec(
            disruption_management=DisruptionManagementSpec(
                manage_machine_disruption_budgets=req.manage_machine_disruption_budgets,
                machine_disruption_budget_namespace=req.machine_disruption_budget_namespace,
            )
        )
        try:
            try:
                current = reg.clusters.get(key)
            except NotFoundError:
                cluster = reg.clusters.create(StorageCluster(
                    metadata=ObjectMeta(name=name, namespace=namespace, labels=req.labels),
                    spec=spec,
                ))
            else:
                current.spec = spec
                current.metadata.labels = req.labels
                cluster = reg.clusters.update(current)
        except (AlreadyExistsError, ConflictError) as e:
            raise HTTPException(409, str(e))
        except StoreUnavailableError as e:
            raise HTTPException(503, str(e))

        controller.enqueue(key)
        return cluster.model_dump(mode="json")

    @app.get("/clusters/{namespace}/{name}")
    def get_cluster(namespace: str, name: str):
        try:
            cluster = reg.clusters.get(ObjectKey(namespace=namespace, name=name))
        except NotFoundError:
            raise HTTPException(404, "Cluster not found")
        return cluster.model_dump(mode="json")

    @app.delete("/clusters/{namespace}/{name}")
    def delete_cluster(namespace: str, name: str):
        """Delete a cluster. Budgets it owns are garbage collected."""
        try:
            collected = reg.delete_cluster(ObjectKey(namespace=namespace, name=name))
        except NotFoundError:
            raise HTTPException(404, "Cluster not found")
        return {
            "status": "deleted",
            "collected": [str(k) for k in collected],
        }

    @app.get("/clusters/{namespace}/{name}/guard")
    def get_cluster_guard(namespace: str, name: str):
        """The disruption budget guarding a cluster."""
        try:
            cluster = reg.clusters.get(ObjectKey(namespace=namespace, name=name))
            budget = reg.budgets.get(guard_key(cluster))
        except NotFoundError:
            raise HTTPException(404, "Guard not found")
        except InvalidGuardError as e:
            raise HTTPException(422, str(e))
        return budget.model_dump(mode="json")

    # === DISRUPTION BUDGETS ===

    @app.get("/guards")
    def list_guards(namespace: Optional[str] = None):
        return [b.model_dump(mode="json") for b in reg.budgets.list(namespace)]

    # === RECONCILER ===

    @app.post("/reconcile/{namespace}/{name}")
    def reconcile(namespace: str, name: str):
        """Run one reconciliation synchronously."""
        try:
            result = reconciler.reconcile(ObjectKey(namespace=namespace, name=name))
        except Exception as e:
            logger.warning("on-demand reconcile of %s/%s failed: %s", namespace, name, e)
            raise _error_response(e)
        return ReconcileResponse(
            requeue=result.requeue,
            requeue_after_seconds=(
                result.requeue_after.total_seconds() if result.requeue_after else None
            ),
        )

    @app.get("/reconciler/status")
    def reconciler_status():
        """Current controller status."""
        return {
            "status": controller.status,
            "config": reconciler.config.model_dump(),
            "queued": len(controller.queue),
            "tracked_clusters": len(reg.clusters.list()),
            "guards": len(reg.budgets.list()),
            "stats": dict(controller.stats),
        }

    @app.get("/reconciler/config")
    def get_reconciler_config():
        return reconciler.config.model_dump()

    @app.put("/reconciler/config")
    def update_reconciler_config(new_config: ReconcilerConfig):
        """Update the re-poll interval and retry policy."""
        reconciler.config = new_config
        controller.config = new_config
        controller.backoff.base_seconds = new_config.backoff_base_seconds
        controller.backoff.max_seconds = new_config.backoff_max_seconds
        return new_config.model_dump()

    # === HEALTH ===

    @app.get("/health/{namespace}/{name}")
    def get_health(namespace: str, name: str):
        """Ask the health oracle about a cluster."""
        try:
            report = health.is_cluster_clean(ObjectKey(namespace=namespace, name=name))
        except OracleUnavailableError as e:
            raise HTTPException(503, str(e))
        return report.model_dump(mode="json")

    @app.put("/health/{namespace}/{name}")
    def set_health(namespace: str, name: str, req: HealthOverrideRequest):
        """Simulate a health transition (static oracle only)."""
        if not isinstance(health, StaticHealthOracle):
            raise HTTPException(409, "Health oracle does not accept overrides")
        key = ObjectKey(namespace=namespace, name=name)
        if req.error:
            health.set_error(key, OracleUnavailableError(key, req.error))
        elif req.clean is not None:
            health.set_clean(key, req.clean)
        else:
            health.clear(key)
        return {"status": "updated", "cluster": str(key)}

    return app


def create_default_app() -> FastAPI:
    """Application instance served by default: in-memory state, controller running."""
    return create_app(run_controller=True, log_component="controller")


# Default application instance
app = create_default_app()
