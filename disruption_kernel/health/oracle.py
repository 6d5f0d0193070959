"""
Health Oracle: answers whether a storage cluster can lose one more member.

Behavioral Contract:
- clean=True means the cluster has no outstanding redundancy loss.
- Any failure to determine health raises OracleUnavailableError.
  Callers must treat that as "not clean".
"""

import json
import logging
import subprocess
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from disruption_kernel.models.health import HealthReport
from disruption_kernel.models.meta import ObjectKey

logger = logging.getLogger(__name__)

StatusProvider = Callable[[ObjectKey], Union[dict, str]]

# Placement group state flags that do not reduce redundancy
CLEAN_PG_FLAGS = frozenset({"active", "clean", "scrubbing", "deep"})


class OracleUnavailableError(Exception):
    """Health could not be determined."""

    def __init__(self, cluster: ObjectKey, reason: str):
        self.cluster = cluster
        self.reason = reason
        super().__init__(f"health of {cluster} is indeterminate: {reason}")


class HealthOracle(ABC):
    @abstractmethod
    def is_cluster_clean(self, cluster: ObjectKey) -> HealthReport:
        """Report the cluster's health or raise OracleUnavailableError."""


class StaticHealthOracle(HealthOracle):
    """
    Oracle whose answers are set by hand. Used by tests and by the API
    to simulate health transitions. Unknown clusters are indeterminate.
    """

    def __init__(self, default: Optional[bool] = None):
        self.default = default
        self._verdicts: Dict[ObjectKey, Union[bool, Exception]] = {}
        self._lock = threading.Lock()
        self.queries: List[ObjectKey] = []

    def set_clean(self, cluster: ObjectKey, clean: bool) -> None:
        with self._lock:
            self._verdicts[cluster] = clean

    def set_error(self, cluster: ObjectKey, error: Exception) -> None:
        with self._lock:
            self._verdicts[cluster] = error

    def clear(self, cluster: ObjectKey) -> None:
        with self._lock:
            self._verdicts.pop(cluster, None)

    def is_cluster_clean(self, cluster: ObjectKey) -> HealthReport:
        with self._lock:
            self.queries.append(cluster)
            verdict = self._verdicts.get(cluster, self.default)

        if verdict is None:
            raise OracleUnavailableError(cluster, "no health verdict recorded")
        if isinstance(verdict, OracleUnavailableError):
            raise verdict
        if isinstance(verdict, Exception):
            raise OracleUnavailableError(cluster, str(verdict)) from verdict
        return HealthReport(
            clean=verdict,
            details="clean" if verdict else "not clean",
            checked_at=datetime.utcnow(),
        )


def is_clean_pg_state(state_name: str) -> bool:
    """True for states like "active+clean" or "active+clean+scrubbing+deep"."""
    flags = set(state_name.split("+"))
    return {"active", "clean"} <= flags and flags <= CLEAN_PG_FLAGS


def evaluate_ceph_status(status: dict) -> HealthReport:
    """
    Derive a health verdict from `ceph status --format json` output.

    A cluster with no placement groups is clean. Otherwise every PG must be
    in a clean state.
    """
    pgmap = status.get("pgmap")
    if not isinstance(pgmap, dict):
        raise ValueError("status has no pgmap section")

    num_pgs = int(pgmap.get("num_pgs", 0))
    pgs_by_state = {
        entry["state_name"]: int(entry["count"])
        for entry in pgmap.get("pgs_by_state", [])
    }
    now = datetime.utcnow()

    if num_pgs == 0:
        return HealthReport(
            clean=True, details="cluster has no PGs", checked_at=now,
        )

    clean_pgs = sum(
        count for state, count in pgs_by_state.items() if is_clean_pg_state(state)
    )
    if clean_pgs == num_pgs:
        return HealthReport(
            clean=True,
            details=f"all {num_pgs} PGs are clean",
            num_pgs=num_pgs,
            pgs_by_state=pgs_by_state,
            checked_at=now,
        )
    return HealthReport(
        clean=False,
        details=f"{num_pgs - clean_pgs} of {num_pgs} PGs are not clean",
        num_pgs=num_pgs,
        pgs_by_state=pgs_by_state,
        checked_at=now,
    )


class CephStatusHealthOracle(HealthOracle):
    """
    Oracle backed by the Ceph status report.

    The status provider talks to the cluster and enforces its own timeout;
    any failure it raises, and any malformed report, is indeterminate health.
    """

    def __init__(self, status_provider: StatusProvider):
        self.status_provider = status_provider

    def is_cluster_clean(self, cluster: ObjectKey) -> HealthReport:
        try:
            raw = self.status_provider(cluster)
        except Exception as e:
            raise OracleUnavailableError(cluster, f"status query failed: {e}") from e

        try:
            status = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            report = evaluate_ceph_status(status)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise OracleUnavailableError(cluster, f"malformed status: {e}") from e

        logger.debug("cluster %s health: %s", cluster, report.details)
        return report


def ceph_cli_status(
    binary: str = "ceph",
    timeout_seconds: float = 15,
    config_dir: Optional[str] = None,
) -> StatusProvider:
    """
    Status provider that shells out to the ceph CLI.
    The storage cluster's name is the ceph cluster name.
    """

    def provider(cluster: ObjectKey) -> str:
        cmd = [binary, "status", "--format", "json", f"--cluster={cluster.name}"]
        if config_dir:
            cmd.append(f"--conf={config_dir}/{cluster.name}/{cluster.name}.config")
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=timeout_seconds, check=True,
        )
        return result.stdout

    return provider
