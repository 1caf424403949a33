"""YAML loading and saving utilities for garage data."""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dateutil.parser import isoparse

from .activity import Activity
from .attachment import Attachment
from .garage import Garage
from .part import Gear, Host, Part
from .service_event import ServiceEvent
from .service_plan import ServicePlan
from .usage import Usage, UsageAggregate

SCHEMA_FILE = Path(__file__).parent / "schema.yaml"


def parse_time(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    YAML may already hand us a datetime for unquoted timestamps; naive
    values are taken to be UTC.
    """
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = isoparse(str(value))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# =============================================================================
# Parsing
# =============================================================================


def _parse_part(dct: Dict[str, Any]) -> Part:
    return Part(
        dct["id"],
        dct["type"],
        dct["owner"],
        parse_time(dct["created"]),
        dct.get("name"),
        parse_time(dct.get("retired")),
        dct.get("positions") or (),
    )


def _parse_gear(dct: Dict[str, Any]) -> Gear:
    return Gear(dct["id"], dct["owner"], dct.get("positions") or [], dct.get("name"))


def _parse_attachment(dct: Dict[str, Any]) -> Attachment:
    return Attachment(
        dct["id"],
        dct["part"],
        dct["gear"],
        dct["position"],
        parse_time(dct["start"]),
        parse_time(dct.get("end")),
    )


def _parse_activity(dct: Dict[str, Any]) -> Activity:
    return Activity(
        id=dct["id"],
        owner=dct["owner"],
        gear_id=dct.get("gear"),
        start=parse_time(dct["start"]),
        duration=dct["duration"],
        distance=dct.get("distance", 0),
        moving_time=dct.get("movingTime"),
        elevation=dct.get("elevation", 0),
        descent=dct.get("descent"),
        energy=dct.get("energy", 0),
        name=dct.get("name"),
    )


def _parse_plan(dct: Dict[str, Any]) -> ServicePlan:
    return ServicePlan(
        dct["id"],
        dct["name"],
        dct["metric"],
        dct["threshold"],
        dct.get("recurrence", "recurring"),
        dct.get("part"),
        dct.get("partType"),
        dct.get("owner"),
    )


def _parse_event(dct: Dict[str, Any]) -> ServiceEvent:
    return ServiceEvent(
        dct["id"],
        dct["part"],
        parse_time(dct["time"]),
        dct.get("plans"),
        dct.get("notes"),
    )


def _parse_usage(dct: Dict[str, Any]) -> UsageAggregate:
    usage = Usage(**{k: dct.get(k, 0) for k in Usage().as_dict()})
    return UsageAggregate(dct["part"], usage, dct.get("version", 0))


def garage_from_dict(data: Optional[Dict[str, Any]]) -> Garage:
    """Build a Garage from the raw YAML structure."""
    data = data or {}
    return Garage(
        parts=[_parse_part(d) for d in data.get("parts") or []],
        gears=[_parse_gear(d) for d in data.get("gears") or []],
        attachments=[_parse_attachment(d) for d in data.get("attachments") or []],
        activities=[_parse_activity(d) for d in data.get("activities") or []],
        plans=[_parse_plan(d) for d in data.get("plans") or []],
        events=[_parse_event(d) for d in data.get("serviceEvents") or []],
        usage=[_parse_usage(d) for d in data.get("usage") or []],
    )


def load_garage(filename: Union[str, Path]) -> Garage:
    """Load a garage from a YAML file."""
    with open(filename, "rb") as fp:
        return garage_from_dict(yaml.load(fp, Loader=yaml.SafeLoader))


def load_schema() -> Dict[str, Any]:
    """The JSON schema garage files are validated against."""
    with open(SCHEMA_FILE, "rb") as fp:
        return yaml.load(fp, Loader=yaml.SafeLoader)


# =============================================================================
# Serializing
# =============================================================================


def _positions_to_yaml(host: Host) -> Union[List[str], Dict[str, List[str]]]:
    """Plain list of names unless some position is limited to part types."""
    if not host.is_restricted:
        return host.positions
    return {name: list(types) for name, types in host.position_types.items()}


def _part_to_dict(part: Part) -> Dict[str, Any]:
    """Serialize a Part to the YAML dict format (camelCase keys)."""
    d: Dict[str, Any] = {
        "id": part.id,
        "type": part.part_type,
        "owner": part.owner,
        "created": format_time(part.created),
    }
    if part.name is not None:
        d["name"] = part.name
    if part.retired is not None:
        d["retired"] = format_time(part.retired)
    if part.is_assembly:
        d["positions"] = _positions_to_yaml(part)
    return d


def _gear_to_dict(gear: Gear) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "id": gear.id,
        "owner": gear.owner,
        "positions": _positions_to_yaml(gear),
    }
    if gear.name is not None:
        d["name"] = gear.name
    return d


def _attachment_to_dict(att: Attachment) -> Dict[str, Any]:
    d = {
        "id": att.id,
        "part": att.part_id,
        "gear": att.gear_id,
        "position": att.position,
        "start": format_time(att.start),
    }
    if att.end is not None:
        d["end"] = format_time(att.end)
    return d


def _activity_to_dict(act: Activity) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "id": act.id,
        "owner": act.owner,
        "start": format_time(act.start),
        "duration": act.duration,
        "distance": act.distance,
        "elevation": act.elevation,
        "energy": act.energy,
    }
    if act.gear_id is not None:
        d["gear"] = act.gear_id
    if act.moving_time is not None:
        d["movingTime"] = act.moving_time
    if act.descent is not None:
        d["descent"] = act.descent
    if act.name is not None:
        d["name"] = act.name
    return d


def _plan_to_dict(plan: ServicePlan) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "id": plan.id,
        "name": plan.name,
        "metric": plan.metric.value,
        "threshold": plan.threshold,
        "recurrence": plan.recurrence.value,
    }
    if plan.part_id is not None:
        d["part"] = plan.part_id
    if plan.part_type is not None:
        d["partType"] = plan.part_type
    if plan.owner is not None:
        d["owner"] = plan.owner
    return d


def _event_to_dict(event: ServiceEvent) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "id": event.id,
        "part": event.part_id,
        "time": format_time(event.time),
    }
    if event.plans:
        d["plans"] = list(event.plans)
    if event.notes is not None:
        d["notes"] = event.notes
    return d


def _usage_to_dict(agg: UsageAggregate) -> Dict[str, Any]:
    return {"part": agg.part_id, **agg.usage.as_dict(), "version": agg.version}


def garage_to_dict(garage: Garage) -> Dict[str, Any]:
    return {
        "parts": [_part_to_dict(p) for p in garage.parts.values()],
        "gears": [_gear_to_dict(g) for g in garage.gears.values()],
        "attachments": [
            _attachment_to_dict(a)
            for a in sorted(garage.attachments.values(), key=lambda a: (a.start, a.id))
        ],
        "activities": [
            _activity_to_dict(a)
            for a in sorted(garage.activities.values(), key=lambda a: (a.start, a.id))
        ],
        "plans": [_plan_to_dict(p) for p in garage.plans.values()],
        "serviceEvents": [
            _event_to_dict(e)
            for e in sorted(garage.events.values(), key=lambda e: (e.time, e.id))
        ],
        "usage": [_usage_to_dict(u) for u in garage.usage.values()],
    }


def save_garage(filename: Union[str, Path], garage: Garage) -> None:
    """
    Write a garage to a YAML file.

    The data goes to a sibling temp file first and replaces the target in
    one step, so readers never see a half-written file.
    """
    path = Path(filename)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w") as fp:
        yaml.dump(
            garage_to_dict(garage),
            fp,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
            width=120,
        )
    os.replace(tmp, path)
