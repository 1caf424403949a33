"""Activity records: usage-generating events such as rides."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .usage import Usage


@dataclass
class Activity:
    """An activity on a gear with its raw metrics."""

    id: str
    owner: str
    gear_id: Optional[str]
    start: datetime
    duration: int  # seconds
    distance: int = 0  # meters
    moving_time: Optional[int] = None  # seconds
    elevation: int = 0  # meters climbed
    descent: Optional[int] = None  # meters, defaults to elevation
    energy: int = 0  # kJ
    name: Optional[str] = None

    @property
    def end(self) -> datetime:
        return self.start + timedelta(seconds=self.duration)

    def usage(self) -> Usage:
        """
        Extract the usage of the whole activity.

        Moving time is preferred over elapsed duration; a missing descent
        is assumed to equal the climb.
        """
        return Usage(
            duration=self.moving_time if self.moving_time is not None else self.duration,
            distance=self.distance,
            elevation=self.elevation,
            descent=self.descent if self.descent is not None else self.elevation,
            energy=self.energy,
            count=1,
        )


# Fields a corrective edit may change.
EDITABLE_FIELDS = (
    "gear_id",
    "start",
    "duration",
    "distance",
    "moving_time",
    "elevation",
    "descent",
    "energy",
    "name",
)
