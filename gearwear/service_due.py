"""ServiceDue dataclass for calculated service status."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from .status import Status

if TYPE_CHECKING:
    from .service_plan import ServicePlan


@dataclass
class ServiceDue:
    """Calculated service status of one plan for one part."""

    plan: "ServicePlan"
    status: Status
    since_baseline: Optional[int] = None
    margin: Optional[int] = None
    last_service: Optional[datetime] = None

    @property
    def is_due(self) -> bool:
        return self.status is Status.DUE
