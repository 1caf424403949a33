"""Usage aggregator: cached per-part totals kept in step with attributions."""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from .activity import Activity
from .attribution import AttributionEngine
from .errors import StaleVersion
from .store import Transaction
from .usage import ZERO, Usage, UsageAggregate

logger = logging.getLogger(__name__)


class UsageAggregator:
    """
    Per-part usage aggregates of one transaction's garage.

    ``recompute_from_scratch`` and any sequence of ``apply_delta`` calls
    covering the same credits yield identical totals: credits are integers
    and integer addition does not depend on order.
    """

    def __init__(self, txn: Transaction, engine: AttributionEngine):
        self.txn = txn
        self.garage = txn.garage
        self.engine = engine

    def get(self, part_id: str) -> UsageAggregate:
        """The cached aggregate; a part never used has a zero aggregate."""
        self.garage.get_part(part_id)
        return self.garage.usage.get(part_id) or UsageAggregate(part_id)

    def apply_delta(self, part_id: str, delta: Usage, version_expected: int) -> int:
        """Add ``delta`` to the part's aggregate and return the new version."""
        current = self.get(part_id)
        if current.version != version_expected:
            raise StaleVersion(
                f"usage of {part_id} is at version {current.version}, "
                f"expected {version_expected}"
            )
        updated = current.advance(current.usage + delta)
        self.txn.put("usage", part_id, updated)
        return updated.version

    def recompute_from_scratch(self, part_id: str) -> UsageAggregate:
        """Rebuild the aggregate from the attachment and activity records."""
        current = self.get(part_id)
        total = ZERO
        for activity in self.activities_for(part_id):
            total = total + self.engine.attribute(activity).for_part(part_id)
        updated = current.advance(total)
        self.txn.put("usage", part_id, updated)
        if total != current.usage:
            logger.debug("recomputed %s: %s -> %s", part_id, current.usage, total)
        return updated

    def activities_for(self, part_id: str) -> List[Activity]:
        """Activities that may credit the part, directly or through its assembly."""
        found: Dict[str, Activity] = {}
        for gear_id, start, end in self.garage.gear_windows(part_id):
            for activity in self.garage.activities_on(gear_id, start, end):
                found[activity.id] = activity
        return sorted(found.values(), key=lambda a: (a.start, a.id))

    def usage_between(
        self,
        part_id: str,
        t0: Optional[datetime] = None,
        t1: Optional[datetime] = None,
    ) -> Usage:
        """Credits of activities starting in [t0, t1); None leaves a side open."""
        total = ZERO
        for activity in self.activities_for(part_id):
            if t0 is not None and activity.start < t0:
                continue
            if t1 is not None and activity.start >= t1:
                continue
            total = total + self.engine.attribute(activity).for_part(part_id)
        return total

    def gear_usage(self, gear_id: str) -> Usage:
        """Total of every activity ridden on a gear."""
        gear = self.garage.get_gear(gear_id)
        total = ZERO
        for activity in self.garage.activities.values():
            if activity.gear_id == gear.id and activity.duration > 0:
                total = total + activity.usage()
        return total
