"""Reconciler configuration and per-invocation results."""

from datetime import timedelta
from typing import Optional

from pydantic import BaseModel, Field


class ReconcilerConfig(BaseModel):
    """Configuration for the disruption guard controller."""

    requeue_after_seconds: float = 60
    resync_period_seconds: float = 300
    max_concurrent_reconciles: int = Field(default=1, ge=1)
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 300


class ReconcileResult(BaseModel):
    """
    Outcome of one successful reconciliation.

    requeue_after asks the caller to check again even without a new trigger.
    Failures are raised, not returned.
    """

    requeue: bool = False
    requeue_after: Optional[timedelta] = None
