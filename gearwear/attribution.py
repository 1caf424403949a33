"""
Attribution engine: which parts are credited with an activity's metrics.

Every mount position of the activity's gear is looked at on its own; a part
on the front wheel gets the full distance, not a share of the bike's total.
Within one position the activity window is cut at every mount change that
happens strictly inside it, and each piece goes to the part mounted then.
An assembly passes its pieces on to the subparts mounted on it, so a tire
on a wheel is credited whenever the wheel is.

The part "mounted at activity start" is the one whose attachment covers the
start instant; when one attachment ends exactly at the start and another
begins there, the ending one wins. It keeps the credit until the first mount
change inside the window.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from fractions import Fraction
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from .activity import Activity
from .attachment import Attachment, slot_key
from .calculations import micros, scale_usage
from .intervals import IntervalStore
from .part import Host
from .usage import ZERO, Usage

Segment = Tuple[str, datetime, datetime]


@dataclass(frozen=True)
class Credit:
    """One (position, part) entry of an attribution."""

    position: str
    part_id: str
    fraction: Fraction
    usage: Usage


@dataclass
class Attribution:
    """All credits computed for one activity, and the mount slots read for them."""

    activity_id: str
    credits: List[Credit] = field(default_factory=list)
    slots: Set[str] = field(default_factory=set)

    def by_part(self) -> Dict[str, Usage]:
        totals: Dict[str, Usage] = {}
        for credit in self.credits:
            totals[credit.part_id] = totals.get(credit.part_id, ZERO) + credit.usage
        return totals

    def for_part(self, part_id: str) -> Usage:
        return self.by_part().get(part_id, ZERO)

    @property
    def parts(self) -> set:
        return {c.part_id for c in self.credits if c.usage}


def owner_at(
    intervals: List[Attachment], instant: datetime, at_start: bool = False
) -> Optional[Attachment]:
    """
    The attachment holding a position at ``instant``.

    With ``at_start``, an attachment ending at ``instant`` wins over another
    one starting there. Without a successor it has no claim on the instant.
    """
    if at_start and any(att.start == instant for att in intervals):
        for att in intervals:
            if att.end == instant and att.start < instant:
                return att
    for att in intervals:
        if att.covers(instant):
            return att
    return None


def position_segments(
    intervals: List[Attachment], start: datetime, end: datetime, at_start: bool = True
) -> List[Segment]:
    """The (part, from, until) pieces of [start, end] held by each mounted part."""
    cuts = sorted(
        {
            t
            for att in intervals
            for t in (att.start, att.end)
            if t is not None and start < t < end
        }
    )
    points = [start] + cuts + [end]
    segments = []
    for i, (lo, hi) in enumerate(zip(points, points[1:])):
        owner = owner_at(intervals, lo, at_start=(at_start and i == 0))
        if owner is not None and hi > lo:
            segments.append((owner.part_id, lo, hi))
    return segments


class AttributionEngine:
    """Computes attributions against one transaction's interval store."""

    def __init__(self, intervals: IntervalStore):
        self.intervals = intervals
        self.garage = intervals.garage

    def attribute(self, activity: Optional[Activity]) -> Attribution:
        """
        Credits for every part attached during the activity.

        An activity without gear or without duration credits nobody.
        """
        if activity is None:
            return Attribution("")
        result = Attribution(activity.id)
        if activity.gear_id is None:
            return result
        gear = self.garage.gears.get(activity.gear_id)
        if gear is None:
            return result

        start, end = activity.start, activity.end
        shares: Dict[Tuple[str, str], int] = defaultdict(int)
        self._collect(gear, "", start, end, start, shares, result.slots, frozenset())
        if activity.duration <= 0:
            return result

        total = micros(end - start)
        usage = activity.usage()
        for (position, part_id), share in shares.items():
            result.credits.append(
                Credit(
                    position,
                    part_id,
                    Fraction(share, total),
                    scale_usage(usage, share, total),
                )
            )
        return result

    def _collect(
        self,
        host: Host,
        prefix: str,
        start: datetime,
        end: datetime,
        activity_start: datetime,
        shares: Dict[Tuple[str, str], int],
        slots: Set[str],
        seen: FrozenSet[str],
    ) -> None:
        """Add the time each part held a position of ``host`` within [start, end]."""
        for position in host.positions:
            label = prefix + position
            slots.add(slot_key(host.id, position))
            intervals = self.intervals.intervals_at_position(host.id, position, start, end)
            segments = position_segments(
                intervals, start, end, at_start=(start == activity_start)
            )
            for part_id, lo, hi in segments:
                shares[(label, part_id)] += micros(hi - lo)
                part = self.garage.parts.get(part_id)
                if part is not None and part.is_assembly and part_id not in seen:
                    self._collect(
                        part, label + "/", lo, hi, activity_start, shares, slots, seen | {part_id}
                    )


def diff(before: Attribution, after: Attribution) -> Dict[str, Usage]:
    """
    Per-part usage change from one attribution to another.

    Every part credited before or after is included, even with a zero delta,
    so removed credit is cleaned up too.
    """
    old, new = before.by_part(), after.by_part()
    return {part: new.get(part, ZERO) - old.get(part, ZERO) for part in sorted(set(old) | set(new))}
