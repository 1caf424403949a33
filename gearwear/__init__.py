"""
Attachment timeline and usage accounting for bike parts.

This package provides the accounting core:
- Part, Gear: Components, assemblies and the gear they are mounted on
- Attachment: Time a part occupies a gear's mount position
- Activity: Rides and other usage-generating events
- Usage, UsageAggregate: Wear counters and cached per-part totals
- ServicePlan, ServiceEvent, ServiceDue: Maintenance thresholds and status
- MutationCoordinator: The single entry point for changing a garage
"""

from .errors import (
    GearwearError,
    NotFound,
    Conflict,
    InvalidRange,
    StaleVersion,
    Forbidden,
    DatabaseFailure,
)
from .status import Status
from .usage import MetricKind, Usage, UsageAggregate, ZERO
from .part import Host, Part, Gear
from .attachment import Attachment, Overlap
from .activity import Activity
from .service_plan import Recurrence, ServicePlan
from .service_event import ServiceEvent
from .service_due import ServiceDue
from .garage import Garage
from .auth import Actor, User
from .config import Config, configure_logging, load_config
from .loader import load_garage, load_schema, save_garage
from .store import MemoryStore, YamlStore
from .coordinator import Mutation, MutationCoordinator, MutationState

__all__ = [
    "GearwearError",
    "NotFound",
    "Conflict",
    "InvalidRange",
    "StaleVersion",
    "Forbidden",
    "DatabaseFailure",
    "Status",
    "MetricKind",
    "Usage",
    "UsageAggregate",
    "ZERO",
    "Host",
    "Part",
    "Gear",
    "Attachment",
    "Overlap",
    "Activity",
    "Recurrence",
    "ServicePlan",
    "ServiceEvent",
    "ServiceDue",
    "Garage",
    "Actor",
    "User",
    "Config",
    "configure_logging",
    "load_config",
    "load_garage",
    "load_schema",
    "save_garage",
    "MemoryStore",
    "YamlStore",
    "Mutation",
    "MutationCoordinator",
    "MutationState",
]
