"""
Mutation coordinator: the single entry point for changing a garage.

Each mutation runs in its own store transaction and walks a fixed state
machine::

    REQUESTED -> VALIDATED -> INTERVALS_UPDATED -> AFFECTED_PARTS_IDENTIFIED
              -> AGGREGATES_INVALIDATED -> RECOMPUTED -> COMMITTED

A validation error moves VALIDATED to REJECTED and nothing is written. A
StaleVersion at commit time sends the mutation back to REQUESTED against a
fresh snapshot, up to ``Config.max_retries`` attempts in total; after that
the caller gets Conflict. DatabaseFailure is never retried.
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from .activity import Activity
from .aggregator import UsageAggregator
from .attachment import Attachment, Overlap
from .attribution import Attribution, AttributionEngine, diff
from .auth import Actor
from .config import Config
from .errors import VALIDATION_ERRORS, Conflict, Forbidden, InvalidRange, NotFound, StaleVersion
from .evaluator import ServiceDueEvaluator
from .intervals import DetachPlan, IntervalStore
from .ledger import ActivityLedger
from .part import Gear, Part, Positions
from .service_due import ServiceDue
from .service_event import ServiceEvent
from .service_plan import Recurrence, ServicePlan
from .store import MemoryStore, Transaction
from .usage import MetricKind, Usage, UsageAggregate

logger = logging.getLogger(__name__)


class MutationState(Enum):
    REQUESTED = "requested"
    VALIDATED = "validated"
    INTERVALS_UPDATED = "intervals-updated"
    AFFECTED_PARTS_IDENTIFIED = "affected-parts-identified"
    AGGREGATES_INVALIDATED = "aggregates-invalidated"
    RECOMPUTED = "recomputed"
    COMMITTED = "committed"
    REJECTED = "rejected"


TRANSITIONS = {
    MutationState.REQUESTED: {MutationState.VALIDATED},
    MutationState.VALIDATED: {MutationState.INTERVALS_UPDATED, MutationState.REJECTED},
    MutationState.INTERVALS_UPDATED: {MutationState.AFFECTED_PARTS_IDENTIFIED},
    MutationState.AFFECTED_PARTS_IDENTIFIED: {MutationState.AGGREGATES_INVALIDATED},
    MutationState.AGGREGATES_INVALIDATED: {MutationState.RECOMPUTED},
    MutationState.RECOMPUTED: {MutationState.COMMITTED},
    MutationState.COMMITTED: set(),
    MutationState.REJECTED: set(),
}

TERMINAL = {MutationState.COMMITTED, MutationState.REJECTED}


@dataclass
class Mutation:
    """One requested change and its progress through the state machine."""

    kind: str
    state: MutationState = MutationState.REQUESTED
    attempts: int = 1
    result: Any = None
    affected_parts: Set[str] = field(default_factory=set)
    error: Optional[Exception] = None
    trail: List[MutationState] = field(default_factory=lambda: [MutationState.REQUESTED])

    def advance(self, state: MutationState) -> None:
        if state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"{self.kind}: illegal transition {self.state.name} -> {state.name}")
        self.state = state
        self.trail.append(state)

    def reject(self, error: Exception) -> None:
        self.error = error
        self.advance(MutationState.REJECTED)

    def retry(self) -> None:
        """Start over against a fresh snapshot after losing a commit race."""
        if self.state in TERMINAL:
            raise RuntimeError(f"{self.kind}: cannot retry a {self.state.name} mutation")
        self.attempts += 1
        self.affected_parts = set()
        self.result = None
        self.state = MutationState.REQUESTED
        self.trail.append(MutationState.REQUESTED)

    @property
    def done(self) -> bool:
        return self.state in TERMINAL


class Session:
    """The components of the accounting core bound to one transaction."""

    def __init__(self, txn: Transaction):
        self.txn = txn
        self.garage = txn.garage
        self.intervals = IntervalStore(txn)
        self.engine = AttributionEngine(self.intervals)
        self.ledger = ActivityLedger(txn, self.engine)
        self.aggregator = UsageAggregator(txn, self.engine)
        self.evaluator = ServiceDueEvaluator(self.aggregator)


Validate = Callable[[Session], Any]
Apply = Callable[[Session, Any], Any]


class MutationCoordinator:
    """Runs every mutation of a store as one atomic, retried transaction."""

    def __init__(self, store: Optional[MemoryStore] = None, config: Optional[Config] = None):
        self.store = store if store is not None else MemoryStore()
        self.config = config or Config()
        self.last_mutation: Optional[Mutation] = None

    # =========================================================================
    # Execution
    # =========================================================================

    def execute(self, kind: str, validate: Validate, apply: Apply) -> Mutation:
        """
        Run ``validate`` then ``apply`` in a transaction until it commits.

        ``validate`` must not modify anything and returns a plan handed to
        ``apply``. ``apply`` returns the mutation's result and the usage
        deltas of the activity change, if any, as a ``(result, deltas)``
        pair. A validation error raised by either rejects the mutation and
        discards the transaction.
        """
        mutation = self.last_mutation = Mutation(kind)
        while True:
            try:
                with self.store.transaction() as txn:
                    session = Session(txn)
                    mutation.advance(MutationState.VALIDATED)
                    try:
                        plan = validate(session)
                        result, deltas = apply(session, plan)
                    except VALIDATION_ERRORS as err:
                        mutation.reject(err)
                        logger.info("%s rejected: %s", kind, err)
                        raise
                    mutation.advance(MutationState.INTERVALS_UPDATED)
                    self._reaggregate(session, mutation, deltas)
                    mutation.result = result
                mutation.advance(MutationState.COMMITTED)
                logger.info(
                    "%s committed after %d attempt(s), %d part(s) re-aggregated",
                    kind,
                    mutation.attempts,
                    len(mutation.affected_parts),
                )
                return mutation
            except StaleVersion as err:
                if mutation.attempts >= self.config.max_retries:
                    logger.warning("%s gave up after %d attempts: %s", kind, mutation.attempts, err)
                    raise Conflict(
                        f"{kind} kept losing to concurrent updates ({err})"
                    ) from err
                logger.warning("%s lost a commit race, retrying: %s", kind, err)
                mutation.retry()

    def _reaggregate(
        self, session: Session, mutation: Mutation, deltas: Optional[Dict[str, Usage]]
    ) -> None:
        """
        Bring the usage aggregates in line with the session's changes.

        Parts touched by an interval change are recomputed from scratch;
        parts only affected by an activity change get their delta applied.
        """
        recompute: Set[str] = set()
        for change in session.intervals.changes:
            recompute |= session.intervals.parts_touching(change)
        deltas = {p: d for p, d in (deltas or {}).items() if p not in recompute}
        mutation.affected_parts = recompute | set(deltas)
        mutation.advance(MutationState.AFFECTED_PARTS_IDENTIFIED)

        mutation.advance(MutationState.AGGREGATES_INVALIDATED)
        for part_id in sorted(recompute):
            if part_id in session.garage.parts:
                session.aggregator.recompute_from_scratch(part_id)
        for part_id, delta in sorted(deltas.items()):
            if part_id not in session.garage.parts:
                continue
            current = session.aggregator.get(part_id)
            session.aggregator.apply_delta(part_id, delta, current.version)
        mutation.advance(MutationState.RECOMPUTED)

    def _read(self, query: Callable[[Session], Any]) -> Any:
        with self.store.transaction() as txn:
            return query(Session(txn))

    @staticmethod
    def _authorize(actor: Actor, *owners: str) -> None:
        for owner in owners:
            if not actor.may_modify(owner):
                raise Forbidden(f"{actor.id} may not modify records of {owner}")

    # =========================================================================
    # Attachments
    # =========================================================================

    def create_attachment(
        self, actor: Actor, part_id: str, gear_id: str, position: str, start: datetime
    ) -> str:
        """
        Mount a part at a position of a gear or assembly from ``start``.

        Returns the attachment id; when the new interval adjoins one of the
        same part at the same position, that attachment is extended instead.
        """

        def validate(s: Session):
            part = s.garage.get_part(part_id)
            self._authorize(actor, part.owner, s.garage.host_owner(gear_id))
            return s.intervals.plan_attach(gear_id, position, part_id, start)

        def apply(s: Session, plan):
            return s.intervals.apply_attach(plan), None

        return self.execute("create_attachment", validate, apply).result

    def close_attachment(self, actor: Actor, attachment_id: str, end: datetime) -> None:
        """Dismount a part at ``end``, or move the end of a closed attachment."""

        def validate(s: Session):
            att = s.intervals.get(attachment_id)
            self._authorize(actor, s.garage.get_part(att.part_id).owner)
            return s.intervals.plan_detach(attachment_id, end)

        def apply(s: Session, plan):
            s.intervals.apply_detach(plan)
            return None, None

        self.execute("close_attachment", validate, apply)

    def timeline(self, part_id: str) -> List[Attachment]:
        """Every attachment of a part, oldest first."""
        def query(s: Session):
            s.garage.get_part(part_id)
            return s.intervals.for_part(part_id)

        return self._read(query)

    def position_history(self, gear_id: str, position: str) -> List[Attachment]:
        return self._read(lambda s: s.intervals.history(gear_id, position))

    def subparts(self, part_id: str, at: Optional[datetime] = None) -> List[Attachment]:
        """What is mounted on an assembly at ``at`` (default: now)."""
        at = at or datetime.now(timezone.utc)

        def query(s: Session):
            s.garage.get_part(part_id)
            return s.garage.mounted_on(part_id, at)

        return self._read(query)

    # =========================================================================
    # Assemblies
    # =========================================================================

    def attach_assembly(
        self,
        actor: Actor,
        part_id: str,
        gear_id: str,
        position: str,
        time: datetime,
        with_subparts: bool = True,
    ) -> str:
        """
        Move a part to a gear or assembly position at ``time``.

        Unlike ``create_attachment`` this swaps: the part is first taken off
        wherever it is mounted, and whatever occupies the target position is
        taken off. Subparts ride along with the part; without
        ``with_subparts`` they are taken off it instead. Returns the attachment id.
        """

        def validate(s: Session):
            part = s.garage.get_part(part_id)
            host = s.garage.get_host(gear_id)
            self._authorize(actor, part.owner, host.owner)
            if not host.has_position(position):
                raise NotFound(f"{gear_id} has no position {position!r}")
            if not host.accepts(position, part.part_type):
                raise Conflict(f"a {part.part_type} cannot be mounted at {gear_id}/{position}")
            current = s.intervals.covering(part_id, time)
            if current is not None and (current.gear_id, current.position) == (gear_id, position):
                raise Conflict(f"part {part_id} is already mounted at {gear_id}/{position}")
            return current

        def apply(s: Session, current):
            if current is not None:
                self._dismount(s, current, time)
            if not with_subparts:
                for sub in s.garage.mounted_on(part_id, time):
                    self._dismount(s, sub, time)
            occupant = s.intervals.occupant(gear_id, position, time)
            if occupant is not None:
                self._dismount(s, occupant, time)
            return s.intervals.attach(gear_id, position, part_id, time), None

        return self.execute("attach_assembly", validate, apply).result

    def detach_assembly(
        self, actor: Actor, part_id: str, time: datetime, with_subparts: bool = True
    ) -> None:
        """
        Take a part off wherever it is mounted at ``time``.

        Subparts stay on it; without ``with_subparts`` they are taken off as
        well.
        """

        def validate(s: Session):
            self._authorize(actor, s.garage.get_part(part_id).owner)
            current = s.intervals.covering(part_id, time)
            if current is None:
                raise NotFound(f"part {part_id} is not mounted at {time}")
            return current

        def apply(s: Session, current):
            if not with_subparts:
                for sub in s.garage.mounted_on(part_id, time):
                    self._dismount(s, sub, time)
            self._dismount(s, current, time)
            return None, None

        self.execute("detach_assembly", validate, apply)

    @staticmethod
    def _dismount(s: Session, att: Attachment, time: datetime) -> None:
        if att.start == time:
            raise Conflict(f"part {att.part_id} was only mounted at {time}")
        s.intervals.detach(att.id, time)

    def intervals_overlapping(self, part_id: str, t0: datetime, t1: datetime) -> List[Overlap]:
        return self._read(lambda s: s.intervals.intervals_overlapping(part_id, t0, t1))

    # =========================================================================
    # Activities
    # =========================================================================

    def record_activity(
        self,
        actor: Actor,
        owner: str,
        gear_id: Optional[str],
        start: datetime,
        duration: int,
        **metrics,
    ) -> str:
        """
        Record an activity and credit the parts mounted during it.

        ``metrics`` takes distance, moving_time, elevation, descent, energy
        and name.
        """

        def validate(s: Session):
            self._authorize(actor, owner)
            if gear_id is not None:
                self._authorize(actor, s.garage.get_gear(gear_id).owner)
            return s.ledger.new_activity(
                owner=owner, gear_id=gear_id, start=start, duration=duration, **metrics
            )

        def apply(s: Session, activity):
            s.ledger.record(activity)
            return activity.id, diff(Attribution(""), s.engine.attribute(activity))

        return self.execute("record_activity", validate, apply).result

    def edit_activity(self, actor: Actor, activity_id: str, **fields) -> None:
        """Correct an activity; the credits move with it."""

        def validate(s: Session):
            self._authorize(actor, s.ledger.get(activity_id).owner)
            edited = s.ledger.plan_edit(activity_id, fields)
            if edited.gear_id is not None:
                self._authorize(actor, s.garage.get_gear(edited.gear_id).owner)
            return edited

        def apply(s: Session, edited):
            return None, s.ledger.replace(edited)

        self.execute("edit_activity", validate, apply)

    def delete_activity(self, actor: Actor, activity_id: str) -> None:
        """Delete an activity and the usage it contributed; NotFound once gone."""

        def validate(s: Session):
            self._authorize(actor, s.ledger.get(activity_id).owner)

        def apply(s: Session, _plan):
            return None, s.ledger.delete(activity_id)

        self.execute("delete_activity", validate, apply)

    def activities(self, owner: Optional[str] = None) -> List[Activity]:
        return self._read(lambda s: s.ledger.for_owner(owner))

    # =========================================================================
    # Queries
    # =========================================================================

    def get_usage(self, part_id: str) -> UsageAggregate:
        return self._read(lambda s: s.aggregator.get(part_id))

    def gear_usage(self, gear_id: str) -> Usage:
        return self._read(lambda s: s.aggregator.gear_usage(gear_id))

    def get_service_status(
        self, part_id: str, as_of: Optional[datetime] = None
    ) -> List[ServiceDue]:
        return self._read(lambda s: s.evaluator.get_all_service_status(part_id, as_of))

    # =========================================================================
    # Parts and gear
    # =========================================================================

    def add_part(
        self,
        actor: Actor,
        part_type: str,
        owner: str,
        created: datetime,
        name: Optional[str] = None,
        part_id: Optional[str] = None,
        positions: Positions = (),
    ) -> str:
        """Register a part; with ``positions`` it is an assembly carrying subparts."""

        def validate(s: Session):
            self._authorize(actor, owner)
            new_id = part_id or uuid.uuid4().hex
            self._check_new_id(s, new_id)
            return Part(new_id, part_type, owner, created, name, positions=positions)

        def apply(s: Session, part):
            s.txn.put("parts", part.id, part)
            return part.id, None

        return self.execute("add_part", validate, apply).result

    def add_gear(
        self,
        actor: Actor,
        owner: str,
        positions: Positions,
        name: Optional[str] = None,
        gear_id: Optional[str] = None,
    ) -> str:
        def validate(s: Session):
            self._authorize(actor, owner)
            new_id = gear_id or uuid.uuid4().hex
            self._check_new_id(s, new_id)
            return Gear(new_id, owner, positions, name)

        def apply(s: Session, gear):
            s.txn.put("gears", gear.id, gear)
            return gear.id, None

        return self.execute("add_gear", validate, apply).result

    @staticmethod
    def _check_new_id(s: Session, new_id: str) -> None:
        # parts and gear share one namespace since both can host attachments
        if new_id in s.garage.parts:
            raise Conflict(f"part {new_id} already exists")
        if new_id in s.garage.gears:
            raise Conflict(f"gear {new_id} already exists")

    def retire_part(
        self, actor: Actor, part_id: str, time: datetime, with_subparts: bool = False
    ) -> None:
        """
        Take a part out of service at ``time``.

        An attachment still open then is closed at ``time``; the part may
        not be mounted anywhere after it. Subparts mounted on it are taken
        off at ``time``. With ``with_subparts`` they are retired along with
        it, unless they are mounted elsewhere later.
        """

        def validate(s: Session):
            part = s.garage.get_part(part_id)
            self._authorize(actor, part.owner)
            if part.retired is not None:
                raise Conflict(f"part {part_id} is already retired since {part.retired}")
            for att in s.intervals.for_part(part_id):
                if att.start > time or (att.end is not None and att.end > time):
                    raise Conflict(
                        f"part {part_id} is attached to {att.gear_id}/{att.position} after {time}"
                    )
            detaches = [
                s.intervals.plan_detach(att.id, time)
                for att in s.intervals.for_part(part_id)
                if att.is_open
            ]
            retiring = [part]
            self._plan_subpart_retirement(s, part, time, with_subparts, detaches, retiring)
            for retiree in retiring:
                self._authorize(actor, retiree.owner)
            return detaches, retiring

        def apply(s: Session, plan):
            detaches, retiring = plan
            for detach in detaches:
                s.intervals.apply_detach(detach)
            for part in retiring:
                retired = copy.copy(part)
                retired.retired = time
                s.txn.put("parts", part.id, retired)
            logger.debug("retired %s at %s", ", ".join(p.id for p in retiring), time)
            return None, None

        self.execute("retire_part", validate, apply)

    def _plan_subpart_retirement(
        self,
        s: Session,
        host: Part,
        time: datetime,
        with_subparts: bool,
        detaches: List[DetachPlan],
        retiring: List[Part],
    ) -> None:
        for att in s.garage.attachments_on(host.id):
            if att.end is not None and att.end <= time:
                continue
            if att.start >= time:
                raise Conflict(f"part {att.part_id} is mounted on {host.id} after {time}")
            detaches.append(s.intervals.plan_detach(att.id, time))
            sub = s.garage.get_part(att.part_id)
            moves_on = any(a.start > time for a in s.intervals.for_part(sub.id))
            if with_subparts and sub.retired is None and not moves_on:
                retiring.append(sub)
                self._plan_subpart_retirement(s, sub, time, with_subparts, detaches, retiring)

    def restore_part(self, actor: Actor, part_id: str, with_subparts: bool = False) -> None:
        """
        Put a retired part back into service.

        With ``with_subparts``, subparts retired along with it are restored
        too and mounted on it again where they were.
        """

        def validate(s: Session):
            part = s.garage.get_part(part_id)
            self._authorize(actor, part.owner)
            if part.retired is None:
                raise Conflict(f"part {part_id} is not retired")
            remount: List[Attachment] = []
            if with_subparts:
                self._plan_subpart_restore(s, part, part.retired, remount)
            return part, remount

        def apply(s: Session, plan):
            part, remount = plan
            for restoring in [part] + [s.garage.get_part(a.part_id) for a in remount]:
                restored = copy.copy(restoring)
                restored.retired = None
                s.txn.put("parts", restoring.id, restored)
            for att in remount:
                s.intervals.attach(att.gear_id, att.position, att.part_id, att.end)
            return None, None

        self.execute("restore_part", validate, apply)

    def _plan_subpart_restore(
        self, s: Session, host: Part, time: datetime, remount: List[Attachment]
    ) -> None:
        for att in s.garage.attachments_on(host.id):
            sub = s.garage.get_part(att.part_id)
            if att.end == time and sub.retired == time:
                remount.append(att)
                self._plan_subpart_restore(s, sub, time, remount)

    def delete_part(self, actor: Actor, part_id: str) -> None:
        """Delete a part that has never been attached nor serviced."""

        def validate(s: Session):
            part = s.garage.get_part(part_id)
            self._authorize(actor, part.owner)
            if s.intervals.for_part(part_id):
                raise Conflict(f"part {part_id} has attachments")
            if s.garage.attachments_on(part_id):
                raise Conflict(f"part {part_id} has had subparts mounted")
            if s.garage.events_for(part_id):
                raise Conflict(f"part {part_id} has service events")
            if any(p.part_id == part_id for p in s.garage.plans.values()):
                raise Conflict(f"part {part_id} has service plans")
            return part

        def apply(s: Session, part):
            s.txn.remove("parts", part_id)
            s.txn.remove("usage", part_id)
            return None, None

        self.execute("delete_part", validate, apply)

    # =========================================================================
    # Service plans and events
    # =========================================================================

    def add_service_plan(
        self,
        actor: Actor,
        name: str,
        metric: MetricKind,
        threshold: int,
        recurrence: Recurrence = Recurrence.RECURRING,
        part_id: Optional[str] = None,
        part_type: Optional[str] = None,
    ) -> str:
        """
        Add a plan for one part, or for every part of a type the actor owns.
        """

        def validate(s: Session):
            owner = None
            if part_id is not None:
                self._authorize(actor, s.garage.get_part(part_id).owner)
            else:
                owner = actor.id
            if threshold <= 0:
                raise InvalidRange(f"threshold must be positive, got {threshold}")
            return ServicePlan(
                uuid.uuid4().hex, name, metric, threshold, recurrence, part_id, part_type, owner
            )

        def apply(s: Session, plan):
            s.txn.put("plans", plan.id, plan)
            return plan.id, None

        return self.execute("add_service_plan", validate, apply).result

    def delete_service_plan(self, actor: Actor, plan_id: str) -> None:
        def validate(s: Session):
            plan = s.garage.plans.get(plan_id)
            if plan is None:
                return None
            if plan.part_id is not None:
                self._authorize(actor, s.garage.get_part(plan.part_id).owner)
            elif plan.owner is not None:
                self._authorize(actor, plan.owner)
            return plan

        def apply(s: Session, plan):
            if plan is not None:
                s.txn.remove("plans", plan.id)
            return None, None

        self.execute("delete_service_plan", validate, apply)

    def record_service_event(
        self,
        actor: Actor,
        part_id: str,
        time: datetime,
        plans: Optional[List[str]] = None,
        notes: Optional[str] = None,
    ) -> str:
        """Log a service on a part; no ``plans`` resets every plan of the part."""

        def validate(s: Session):
            part = s.garage.get_part(part_id)
            self._authorize(actor, part.owner)
            for plan_id in plans or []:
                plan = s.garage.plans.get(plan_id)
                if plan is None:
                    raise NotFound(f"service plan {plan_id} does not exist")
                if not plan.applies_to(part):
                    raise Conflict(f"service plan {plan_id} does not cover part {part_id}")
            return ServiceEvent(uuid.uuid4().hex, part_id, time, plans, notes)

        def apply(s: Session, event):
            s.txn.put("events", event.id, event)
            return event.id, None

        return self.execute("record_service_event", validate, apply).result

    def delete_service_event(self, actor: Actor, event_id: str) -> None:
        def validate(s: Session):
            event = s.garage.events.get(event_id)
            if event is not None:
                self._authorize(actor, s.garage.get_part(event.part_id).owner)
            return event

        def apply(s: Session, event):
            if event is not None:
                s.txn.remove("events", event.id)
            return None, None

        self.execute("delete_service_event", validate, apply)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def rescan_all(self) -> Dict[str, Usage]:
        """
        Recompute every part's aggregate from the records.

        Returns the parts whose cached totals were wrong, with the
        correction applied to each.
        """

        def validate(s: Session):
            return {pid: s.aggregator.get(pid).usage for pid in s.garage.parts}

        def apply(s: Session, cached):
            fixed = {}
            for pid in sorted(cached):
                fresh = s.aggregator.recompute_from_scratch(pid).usage
                if fresh != cached[pid]:
                    fixed[pid] = fresh - cached[pid]
            if fixed:
                logger.warning("rescan corrected %d part aggregate(s)", len(fixed))
            return fixed, None

        return self.execute("rescan_all", validate, apply).result
