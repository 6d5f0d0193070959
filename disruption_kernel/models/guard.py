"""Machine Disruption Budget: the guard object that gates voluntary evictions."""

from typing import Dict, Optional

from pydantic import BaseModel, Field

from disruption_kernel.models.meta import ObjectKey, ObjectMeta


class LabelSelector(BaseModel):
    match_labels: Dict[str, str] = {}


class MachineDisruptionBudgetSpec(BaseModel):
    """
    How many selected machines may be voluntarily taken down at once.
    An unset value is read as 0 by consumers.
    """

    max_unavailable: Optional[int] = Field(default=None, ge=0, le=1)
    selector: LabelSelector = LabelSelector()


class MachineDisruptionBudget(BaseModel):
    kind: str = "MachineDisruptionBudget"
    api_version: str = "healthchecking.openshift.io/v1alpha1"
    metadata: ObjectMeta
    spec: MachineDisruptionBudgetSpec = MachineDisruptionBudgetSpec()

    @property
    def key(self) -> ObjectKey:
        return self.metadata.key

    @property
    def disruption_allowed(self) -> bool:
        return (self.spec.max_unavailable or 0) > 0
