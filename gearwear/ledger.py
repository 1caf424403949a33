"""Activity ledger: recording, correcting and deleting activities."""

import logging
import uuid
from dataclasses import replace
from typing import Dict, List, Optional

from .activity import EDITABLE_FIELDS, Activity
from .attribution import Attribution, AttributionEngine, diff
from .errors import InvalidRange, NotFound
from .store import Transaction
from .usage import Usage

logger = logging.getLogger(__name__)

METRIC_FIELDS = ("duration", "distance", "moving_time", "elevation", "descent", "energy")


def validate_activity(activity: Activity) -> None:
    """Reject negative durations and metrics."""
    for name in METRIC_FIELDS:
        value = getattr(activity, name)
        if value is not None and value < 0:
            raise InvalidRange(f"{name} must not be negative, got {value}")


class ActivityLedger:
    """
    Activities of one transaction's garage.

    ``edit`` and ``delete`` report the affected parts as a mapping of part id
    to usage delta; its keys are every part credited before or after.
    """

    def __init__(self, txn: Transaction, engine: AttributionEngine):
        self.txn = txn
        self.garage = txn.garage
        self.engine = engine

    def get(self, activity_id: str) -> Activity:
        try:
            return self.garage.activities[activity_id]
        except KeyError:
            raise NotFound(f"activity {activity_id} does not exist") from None

    def for_owner(self, owner: Optional[str] = None) -> List[Activity]:
        """Activities of one owner, or all of them, oldest first."""
        return sorted(
            (a for a in self.garage.activities.values() if owner is None or a.owner == owner),
            key=lambda a: (a.start, a.id),
        )

    def new_activity(self, **fields) -> Activity:
        """Build and validate an activity with a fresh id."""
        activity = Activity(id=uuid.uuid4().hex, **fields)
        self.check(activity)
        return activity

    def plan_edit(self, activity_id: str, fields: Dict) -> Activity:
        """The edited activity, validated but not stored."""
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidRange(f"cannot edit {', '.join(sorted(unknown))}")
        edited = replace(self.get(activity_id), **fields)
        self.check(edited)
        return edited

    def check(self, activity: Activity) -> None:
        validate_activity(activity)
        if activity.gear_id is not None:
            self.garage.get_gear(activity.gear_id)

    def record(self, activity: Activity) -> str:
        self._claim_slots(self.engine.attribute(activity))
        self.txn.put("activities", activity.id, activity)
        logger.debug("recorded activity %s", activity.id)
        return activity.id

    def edit(self, activity_id: str, fields: Dict) -> Dict[str, Usage]:
        return self.replace(self.plan_edit(activity_id, fields))

    def replace(self, edited: Activity) -> Dict[str, Usage]:
        original = self.get(edited.id)
        before = self.engine.attribute(original)
        after = self.engine.attribute(edited)
        self._claim_slots(before)
        self._claim_slots(after)
        self.txn.put("activities", edited.id, edited)
        return diff(before, after)

    def delete(self, activity_id: str) -> Dict[str, Usage]:
        activity = self.get(activity_id)
        before = self.engine.attribute(activity)
        self._claim_slots(before)
        self.txn.remove("activities", activity_id)
        logger.debug("deleted activity %s", activity_id)
        return diff(before, self.engine.attribute(None))

    def _claim_slots(self, attribution: Attribution) -> None:
        """Serialize against interval changes the attribution depends on."""
        for slot in sorted(attribution.slots):
            self.txn.claim("slots", slot)
