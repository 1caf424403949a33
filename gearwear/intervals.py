"""
Interval store: the attachment timeline of every part and mount position.

Two invariants hold after every operation:

* per (host, position) the intervals are pairwise non-overlapping;
* a part is never mounted in two places at once, and has at most one
  open attachment.

A host is a gear or an assembly part. Checks live in ``plan_attach`` /
``plan_detach`` which never modify anything; ``attach`` / ``detach`` apply
a checked plan.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from .attachment import Attachment, Overlap, slot_key
from .calculations import overlap
from .errors import Conflict, InvalidRange, NotFound
from .part import Part
from .store import Transaction

logger = logging.getLogger(__name__)


@dataclass
class IntervalChange:
    """What an interval mutation touched, for re-aggregation."""

    gear_id: str
    position: str
    lo: datetime
    hi: Optional[datetime]  # None = open-ended
    parts: Set[str] = field(default_factory=set)


@dataclass
class AttachPlan:
    """A validated attach request, ready to be applied."""

    part_id: str
    gear_id: str
    position: str
    start: datetime
    end: Optional[datetime]
    truncations: List[Tuple[Attachment, datetime]] = field(default_factory=list)
    merge_prev: Optional[Attachment] = None  # same part, same slot, ends at start
    merge_next: Optional[Attachment] = None  # same part, same slot, starts at end


@dataclass
class DetachPlan:
    attachment: Attachment
    end: datetime


def earliest(*times: Optional[datetime]) -> Optional[datetime]:
    """The earliest of the given times; None stands for open-ended."""
    known = [t for t in times if t is not None]
    return min(known) if known else None


class IntervalStore:
    """Attachment intervals of one transaction's garage."""

    def __init__(self, txn: Transaction):
        self.txn = txn
        self.garage = txn.garage
        self.changes: List[IntervalChange] = []

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, attachment_id: str) -> Attachment:
        try:
            return self.garage.attachments[attachment_id]
        except KeyError:
            raise NotFound(f"attachment {attachment_id} does not exist") from None

    def history(self, gear_id: str, position: str) -> List[Attachment]:
        return self.garage.attachments_at(gear_id, position)

    def for_part(self, part_id: str) -> List[Attachment]:
        return self.garage.attachments_for_part(part_id)

    def open_for_part(self, part_id: str) -> Optional[Attachment]:
        for att in self.for_part(part_id):
            if att.is_open:
                return att
        return None

    def covering(self, part_id: str, instant: datetime) -> Optional[Attachment]:
        """The attachment of a part at ``instant``, if it was mounted then."""
        for att in self.for_part(part_id):
            if att.covers(instant):
                return att
        return None

    def occupant(self, gear_id: str, position: str, instant: datetime) -> Optional[Attachment]:
        """The attachment holding a slot at ``instant``."""
        for att in self.history(gear_id, position):
            if att.covers(instant):
                return att
        return None

    def intervals_overlapping(
        self, part_id: str, t0: datetime, t1: datetime
    ) -> List[Overlap]:
        """Where the part was mounted during the closed range [t0, t1]."""
        result = []
        for att in self.for_part(part_id):
            hit = overlap(att.start, att.end, t0, t1)
            if hit is not None:
                result.append(Overlap(att.id, att.gear_id, att.position, *hit))
        return result

    def intervals_at_position(
        self, gear_id: str, position: str, t0: datetime, t1: datetime
    ) -> List[Attachment]:
        """Attachments of one position touching the closed range [t0, t1]."""
        return [a for a in self.history(gear_id, position) if a.touches(t0, t1)]

    def parts_touching(self, change: IntervalChange) -> Set[str]:
        """
        Parts whose credits may differ after ``change``.

        Only activities at the changed position inside the changed range can
        be re-attributed, and they only ever credit parts mounted there and
        the subparts riding on those. A merge removes an interval only in
        favour of a longer one of the same part, so the post-change history
        suffices.
        """
        touched = {
            a.part_id
            for a in self.history(change.gear_id, change.position)
            if a.touches(change.lo, change.hi)
        }
        touched |= change.parts
        return touched | self.riders(touched, change.lo, change.hi)

    def riders(
        self, hosts: Iterable[str], lo: datetime, hi: Optional[datetime]
    ) -> Set[str]:
        """Subparts mounted, at any depth, on one of ``hosts`` during [lo, hi]."""
        found: Set[str] = set()
        pending = list(hosts)
        while pending:
            host_id = pending.pop()
            for att in self.garage.attachments_on(host_id):
                if att.touches(lo, hi) and att.part_id not in found:
                    found.add(att.part_id)
                    pending.append(att.part_id)
        return found

    # -------------------------------------------------------------------------
    # Attach
    # -------------------------------------------------------------------------

    def plan_attach(
        self, gear_id: str, position: str, part_id: str, start: datetime
    ) -> AttachPlan:
        """
        Validate an attach request without modifying anything.

        A retroactive attach ends where the next interval of the position or
        of the part begins, and never runs past the retirement of the part
        or of its host; a closed interval of the position containing
        ``start`` is truncated there. Mounting a part back where it was
        removed at ``start``, or just before it goes there anyway, extends
        that attachment instead of adding a new one.
        """
        part = self.garage.get_part(part_id)
        host = self.garage.get_host(gear_id)
        if not host.has_position(position):
            raise NotFound(f"{gear_id} has no position {position!r}")
        if not host.accepts(position, part.part_type):
            raise Conflict(f"a {part.part_type} cannot be mounted at {gear_id}/{position}")
        if part.is_retired_at(start):
            raise Conflict(f"part {part_id} is retired since {part.retired}")
        if isinstance(host, Part):
            if host.is_retired_at(start):
                raise Conflict(f"assembly {gear_id} is retired since {host.retired}")
            self._check_nesting(part_id, gear_id, start)

        end = self.retirement_limit(part_id, gear_id)
        for att in self.for_part(part_id):
            if att.is_open:
                raise Conflict(
                    f"part {part_id} is already attached to "
                    f"{att.gear_id}/{att.position} since {att.start}"
                )
            if att.covers(start):
                raise Conflict(
                    f"part {part_id} was attached to {att.gear_id}/{att.position} at {start}"
                )
            if att.start > start and (end is None or att.start < end):
                end = att.start

        truncations = []
        merge_prev = None
        for att in self.history(gear_id, position):
            if att.start == start:
                raise Conflict(f"{gear_id}/{position} is occupied from {start}")
            if att.start > start:
                if end is None or att.start < end:
                    end = att.start
                break
            if att.is_open:
                raise Conflict(
                    f"{gear_id}/{position} is occupied by part {att.part_id} since {att.start}"
                )
            if att.covers(start):
                truncations.append((att, start))
            elif att.part_id == part_id and att.end == start:
                merge_prev = att

        merge_next = None
        if end is not None:
            for att in self.history(gear_id, position):
                if att.part_id == part_id and att.start == end:
                    merge_next = att
        return AttachPlan(
            part_id, gear_id, position, start, end, truncations, merge_prev, merge_next
        )

    def attach(self, gear_id: str, position: str, part_id: str, start: datetime) -> str:
        return self.apply_attach(self.plan_attach(gear_id, position, part_id, start))

    def apply_attach(self, plan: AttachPlan) -> str:
        """Apply an attach plan; returns the id of the resulting attachment."""
        change = IntervalChange(plan.gear_id, plan.position, plan.start, plan.end, {plan.part_id})
        for att, end in plan.truncations:
            logger.debug("truncating %s (part %s) at %s", att.id, att.part_id, end)
            self._write(replace(att, end=end))
            change.parts.add(att.part_id)

        if plan.merge_prev is not None:
            end = plan.merge_next.end if plan.merge_next is not None else plan.end
            attachment = replace(plan.merge_prev, end=end)
            if plan.merge_next is not None:
                self._remove(plan.merge_next)
            logger.debug("extending %s of part %s to %s", attachment.id, plan.part_id, end)
        elif plan.merge_next is not None:
            attachment = replace(plan.merge_next, start=plan.start)
            logger.debug("moving start of %s to %s", attachment.id, plan.start)
        else:
            attachment = Attachment(
                uuid.uuid4().hex, plan.part_id, plan.gear_id, plan.position, plan.start, plan.end
            )
        self._write(attachment)
        self.changes.append(change)
        return attachment.id

    # -------------------------------------------------------------------------
    # Detach
    # -------------------------------------------------------------------------

    def plan_detach(self, attachment_id: str, end: datetime) -> DetachPlan:
        """
        Validate closing (or re-closing) an attachment at ``end``.

        Moving the end later must not run into the next interval of the
        position or of the part, nor past a retirement.
        """
        att = self.get(attachment_id)
        if end < att.start:
            raise InvalidRange(f"detach at {end} is before attach at {att.start}")
        if att.end is None or end > att.end:
            limit = self.retirement_limit(att.part_id, att.gear_id)
            if limit is not None and end > limit:
                raise Conflict(f"cannot extend {attachment_id} past retirement at {limit}")
            for other in self.history(att.gear_id, att.position) + self.for_part(att.part_id):
                if other.id != att.id and att.start < other.start < end:
                    raise Conflict(
                        f"cannot extend {attachment_id} past {other.start}: "
                        f"{other.gear_id}/{other.position} holds part {other.part_id}"
                    )
        return DetachPlan(att, end)

    def detach(self, attachment_id: str, end: datetime) -> None:
        self.apply_detach(self.plan_detach(attachment_id, end))

    def apply_detach(self, plan: DetachPlan) -> None:
        att = plan.attachment
        old_end = att.end
        if old_end is None:
            lo, hi = plan.end, None
        else:
            lo, hi = min(old_end, plan.end), max(old_end, plan.end)
        self._write(replace(att, end=plan.end))
        self.changes.append(IntervalChange(att.gear_id, att.position, lo, hi, {att.part_id}))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def retirement_limit(self, part_id: str, host_id: str) -> Optional[datetime]:
        """The latest a part may stay mounted on a host."""
        part = self.garage.get_part(part_id)
        host = self.garage.parts.get(host_id)
        return earliest(part.retired, host.retired if host is not None else None)

    def _check_nesting(self, part_id: str, host_id: str, at: datetime) -> None:
        """Reject mounting a part inside itself or one of its own subparts."""
        current: Optional[str] = host_id
        seen = set()
        while current is not None and current in self.garage.parts and current not in seen:
            if current == part_id:
                raise Conflict(f"part {part_id} cannot be mounted inside itself")
            seen.add(current)
            holder = self.covering(current, at)
            current = holder.gear_id if holder is not None else None

    def _write(self, att: Attachment) -> None:
        self.txn.put("attachments", att.id, att)
        self.txn.claim("slots", slot_key(att.gear_id, att.position))
        self.txn.claim("parts", att.part_id)

    def _remove(self, att: Attachment) -> None:
        self.txn.remove("attachments", att.id)
        self.txn.claim("slots", slot_key(att.gear_id, att.position))
        self.txn.claim("parts", att.part_id)
