"""Health Report: the health oracle's verdict for one storage cluster."""

from datetime import datetime
from typing import Dict

from pydantic import BaseModel


class HealthReport(BaseModel):
    """Whether a storage cluster can tolerate losing one more member."""

    clean: bool
    details: str = ""
    num_pgs: int = 0
    pgs_by_state: Dict[str, int] = {}
    checked_at: datetime
