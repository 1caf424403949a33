"""Service due evaluation, computed lazily when status is queried."""

from datetime import datetime, timezone
from typing import List, Optional

from .aggregator import UsageAggregator
from .calculations import calc_margin, check_status, days_between
from .part import Part
from .service_due import ServiceDue
from .service_event import ServiceEvent
from .service_plan import ServicePlan
from .status import Status
from .usage import MetricKind


class ServiceDueEvaluator:
    """Compares part usage against the service plans that apply to it."""

    def __init__(self, aggregator: UsageAggregator):
        self.aggregator = aggregator
        self.garage = aggregator.garage

    def last_service(
        self, part: Part, plan: ServicePlan, as_of: datetime
    ) -> Optional[ServiceEvent]:
        """Most recent event on the part resetting this plan, up to as_of."""
        events = [
            e
            for e in self.garage.events_for(part.id)
            if e.matches(plan.id) and e.time <= as_of
        ]
        return events[-1] if events else None

    def calculate_service_due(
        self, part: Part, plan: ServicePlan, as_of: Optional[datetime] = None
    ) -> ServiceDue:
        """
        Calculate the status of one plan for one part.

        Logic:
        - One-time plan with a matching service event: SATISFIED
        - Baseline is the usage accrued before the last matching event
          (zero without one), so retroactive corrections are reflected
        - since_baseline >= threshold: DUE, otherwise OK
        - For the days metric, count calendar days since the last event,
          else since the part was first mounted, else since it was created
        """
        as_of = as_of or datetime.now(timezone.utc)
        last = self.last_service(part, plan, as_of)
        last_time = last.time if last else None

        if plan.is_one_time and last is not None:
            return ServiceDue(plan=plan, status=Status.SATISFIED, last_service=last_time)

        if plan.metric is MetricKind.DAYS:
            since = days_between(self._baseline_time(part, last), as_of)
        else:
            current = self.aggregator.get(part.id).usage.metric(plan.metric)
            baseline = 0
            if last is not None:
                baseline = self.aggregator.usage_between(part.id, None, last.time).metric(
                    plan.metric
                )
            since = current - baseline

        return ServiceDue(
            plan=plan,
            status=check_status(since, plan.threshold),
            since_baseline=since,
            margin=calc_margin(since, plan.threshold),
            last_service=last_time,
        )

    def get_all_service_status(
        self, part_id: str, as_of: Optional[datetime] = None
    ) -> List[ServiceDue]:
        """Calculate service status for all plans covering the part."""
        part = self.garage.get_part(part_id)
        return [
            self.calculate_service_due(part, plan, as_of)
            for plan in self.garage.plans_for(part)
        ]

    def _baseline_time(self, part: Part, last: Optional[ServiceEvent]) -> datetime:
        if last is not None:
            return last.time
        attachments = self.garage.attachments_for_part(part.id)
        if attachments:
            return attachments[0].start
        return part.created
