"""Attachment records: the time a part occupies a gear's mount position."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Attachment:
    """
    A part mounted on ``gear_id`` at ``position`` from ``start``.

    ``gear_id`` names a gear, or an assembly part for a subpart. ``end`` is
    None while the part is still mounted. Attachments are closed, shortened
    or merged with an adjacent one of the same part, never dropped, so the
    history stays intact.
    """

    id: str
    part_id: str
    gear_id: str
    position: str
    start: datetime
    end: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def slot(self) -> str:
        """Key of the (gear, position) pair this attachment occupies."""
        return slot_key(self.gear_id, self.position)

    def covers(self, instant: datetime) -> bool:
        """True if mounted at ``instant`` (start inclusive, end exclusive)."""
        return self.start <= instant and (self.end is None or instant < self.end)

    def touches(self, t0: datetime, t1: Optional[datetime]) -> bool:
        """True if the interval intersects the closed range [t0, t1]."""
        if t1 is not None and self.start > t1:
            return False
        return self.end is None or self.end >= t0


def slot_key(gear_id: str, position: str) -> str:
    return f"{gear_id}/{position}"


@dataclass(frozen=True)
class Overlap:
    """Portion of an attachment that falls inside a queried time range."""

    attachment_id: str
    gear_id: str
    position: str
    start: datetime
    end: datetime
