"""ServicePlan class for maintenance threshold definitions."""
from enum import Enum
from typing import Optional

from .errors import InvalidRange
from .part import Part
from .usage import MetricKind


class Recurrence(Enum):
    ONE_TIME = "one-time"
    RECURRING = "recurring"


class ServicePlan:
    """
    A threshold rule deciding when a part needs service.

    A plan is bound either to one part (``part_id``) or, generically, to
    every part of a ``part_type`` belonging to ``owner``.
    """

    def __init__(
            self,
            id: str,
            name: str,
            metric: MetricKind,
            threshold: int,
            recurrence: Recurrence = Recurrence.RECURRING,
            part_id: Optional[str] = None,
            part_type: Optional[str] = None,
            owner: Optional[str] = None,
    ):
        if (part_id is None) == (part_type is None):
            raise InvalidRange("a service plan needs exactly one of part_id or part_type")
        try:
            metric = MetricKind(metric)
            recurrence = Recurrence(recurrence)
        except ValueError as err:
            raise InvalidRange(str(err)) from None
        self.id = id
        self.name = name
        self.metric = metric
        self.threshold = threshold
        self.recurrence = recurrence
        self.part_id = part_id
        self.part_type = part_type
        self.owner = owner

    @property
    def is_one_time(self) -> bool:
        return self.recurrence is Recurrence.ONE_TIME

    @property
    def is_generic(self) -> bool:
        return self.part_id is None

    def applies_to(self, part: Part) -> bool:
        """Check if this plan covers the given part."""
        if self.part_id is not None:
            return self.part_id == part.id
        if self.owner is not None and self.owner != part.owner:
            return False
        return self.part_type == part.part_type
