"""Garage class - the record set for one persisted store."""

import copy
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from .activity import Activity
from .attachment import Attachment
from .errors import NotFound
from .part import Gear, Host, Part
from .service_event import ServiceEvent
from .service_plan import ServicePlan
from .usage import UsageAggregate

TABLES = ("parts", "gears", "attachments", "activities", "plans", "events", "usage")


class Garage:
    """All parts, gear, attachments, activities and service data of a store."""

    def __init__(
        self,
        parts: Optional[Iterable[Part]] = None,
        gears: Optional[Iterable[Gear]] = None,
        attachments: Optional[Iterable[Attachment]] = None,
        activities: Optional[Iterable[Activity]] = None,
        plans: Optional[Iterable[ServicePlan]] = None,
        events: Optional[Iterable[ServiceEvent]] = None,
        usage: Optional[Iterable[UsageAggregate]] = None,
    ):
        self.parts: Dict[str, Part] = {p.id: p for p in parts or []}
        self.gears: Dict[str, Gear] = {g.id: g for g in gears or []}
        self.attachments: Dict[str, Attachment] = {a.id: a for a in attachments or []}
        self.activities: Dict[str, Activity] = {a.id: a for a in activities or []}
        self.plans: Dict[str, ServicePlan] = {p.id: p for p in plans or []}
        self.events: Dict[str, ServiceEvent] = {e.id: e for e in events or []}
        self.usage: Dict[str, UsageAggregate] = {u.part_id: u for u in usage or []}

    def table(self, name: str) -> dict:
        if name not in TABLES:
            raise KeyError(name)
        return getattr(self, name)

    def clone(self) -> "Garage":
        """Deep copy used as a private transaction snapshot."""
        return copy.deepcopy(self)

    def shallow_copy(self) -> "Garage":
        """New table dicts sharing the (never mutated in place) records."""
        garage = Garage()
        for name in TABLES:
            garage.table(name).update(self.table(name))
        return garage

    def get_part(self, part_id: str) -> Part:
        try:
            return self.parts[part_id]
        except KeyError:
            raise NotFound(f"part {part_id} does not exist") from None

    def get_gear(self, gear_id: str) -> Gear:
        try:
            return self.gears[gear_id]
        except KeyError:
            raise NotFound(f"gear {gear_id} does not exist") from None

    def attachments_for_part(self, part_id: str) -> List[Attachment]:
        """All attachments of a part, ordered by start time."""
        return sorted(
            (a for a in self.attachments.values() if a.part_id == part_id),
            key=lambda a: a.start,
        )

    def attachments_at(self, gear_id: str, position: str) -> List[Attachment]:
        """History of one mount position, ordered by start time."""
        return sorted(
            (
                a
                for a in self.attachments.values()
                if a.gear_id == gear_id and a.position == position
            ),
            key=lambda a: a.start,
        )

    def activities_on(
        self, gear_id: str, t0: datetime, t1: Optional[datetime] = None
    ) -> List[Activity]:
        """
        Activities on a gear whose window touches the closed range [t0, t1].

        ``t1`` None means up to the end of time.
        """
        found = [
            a
            for a in self.activities.values()
            if a.gear_id == gear_id
            and a.end >= t0
            and (t1 is None or a.start <= t1)
        ]
        return sorted(found, key=lambda a: (a.start, a.id))

    def plans_for(self, part: Part) -> List[ServicePlan]:
        """Service plans covering a part, part-specific plans first."""
        plans = [p for p in self.plans.values() if p.applies_to(part)]
        return sorted(plans, key=lambda p: (p.part_id is None, p.name, p.id))

    def events_for(self, part_id: str) -> List[ServiceEvent]:
        """Service events of a part, oldest first."""
        return sorted(
            (e for e in self.events.values() if e.part_id == part_id),
            key=lambda e: (e.time, e.id),
        )

    def get_host(self, host_id: str) -> Host:
        """A gear, or an assembly part, that parts can be mounted on."""
        if host_id in self.gears:
            return self.gears[host_id]
        part = self.parts.get(host_id)
        if part is not None and part.is_assembly:
            return part
        raise NotFound(f"no gear or assembly {host_id}")

    def host_owner(self, host_id: str) -> str:
        return self.get_host(host_id).owner

    def attachments_on(self, host_id: str) -> List[Attachment]:
        """Everything ever mounted on a host, ordered by start time."""
        return sorted(
            (a for a in self.attachments.values() if a.gear_id == host_id),
            key=lambda a: (a.start, a.position),
        )

    def mounted_on(self, host_id: str, instant: datetime) -> List[Attachment]:
        """Subparts mounted on a host at ``instant``."""
        return [a for a in self.attachments_on(host_id) if a.covers(instant)]

    def gear_windows(
        self,
        part_id: str,
        lo: Optional[datetime] = None,
        hi: Optional[datetime] = None,
        seen: FrozenSet[str] = frozenset(),
    ) -> List[Tuple[str, datetime, Optional[datetime]]]:
        """
        The (gear, start, end) ranges in which a part rode along on a gear.

        A subpart rides along whenever its assembly is mounted on a gear, so
        attachments to an assembly are followed up to the gear and clipped
        to the assembly's own time there. ``end`` None means still mounted.
        """
        seen = seen | {part_id}
        windows = []
        for att in self.attachments_for_part(part_id):
            start = att.start if lo is None else max(att.start, lo)
            end = att.end
            if hi is not None:
                end = hi if end is None else min(end, hi)
            if end is not None and end < start:
                continue
            if att.gear_id in self.gears:
                windows.append((att.gear_id, start, end))
            elif att.gear_id not in seen:
                windows.extend(self.gear_windows(att.gear_id, start, end, seen))
        return windows
