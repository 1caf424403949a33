"""ServiceEvent class for maintenance records."""
from datetime import datetime
from typing import Iterable, Optional


class ServiceEvent:
    """A record of maintenance performed on a part."""

    def __init__(
            self,
            id: str,
            part_id: str,
            time: datetime,
            plans: Optional[Iterable[str]] = None,
            notes: Optional[str] = None,
    ):
        self.id = id
        self.part_id = part_id
        self.time = time
        self.plans = list(plans or [])
        self.notes = notes

    def matches(self, plan_id: str) -> bool:
        """An event without explicit plans resets every plan of its part."""
        return not self.plans or plan_id in self.plans
