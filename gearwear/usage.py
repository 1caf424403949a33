"""Usage counters and the cached per-part aggregate."""

from dataclasses import dataclass, field, fields, replace
from enum import Enum


class MetricKind(Enum):
    """Metrics a service plan can be measured against."""

    DURATION = "duration"
    DISTANCE = "distance"
    ELEVATION = "elevation"
    DESCENT = "descent"
    ENERGY = "energy"
    COUNT = "count"
    DAYS = "days"  # calendar time since baseline, not a usage counter

    @property
    def is_usage(self) -> bool:
        return self is not MetricKind.DAYS


@dataclass(frozen=True)
class Usage:
    """
    Cumulative wear counters.

    All counters are integers (seconds, meters, kJ) so that sums are exact
    and independent of the order activities are added in.
    """

    duration: int = 0
    distance: int = 0
    elevation: int = 0
    descent: int = 0
    energy: int = 0
    count: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            *(getattr(self, f.name) + getattr(other, f.name) for f in fields(self))
        )

    def __sub__(self, other: "Usage") -> "Usage":
        return self + (-other)

    def __neg__(self) -> "Usage":
        return Usage(*(-getattr(self, f.name) for f in fields(self)))

    def __bool__(self) -> bool:
        return any(getattr(self, f.name) for f in fields(self))

    def metric(self, kind: MetricKind) -> int:
        """Value of a usage metric."""
        if not kind.is_usage:
            raise ValueError(f"{kind.value} is not a usage counter")
        return getattr(self, kind.value)

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


ZERO = Usage()


@dataclass(frozen=True)
class UsageAggregate:
    """Cached usage of a part plus a generation counter for staleness checks."""

    part_id: str
    usage: Usage = field(default=ZERO)
    version: int = 0

    def advance(self, usage: Usage) -> "UsageAggregate":
        """Return the next generation holding ``usage``."""
        return replace(self, usage=usage, version=self.version + 1)
