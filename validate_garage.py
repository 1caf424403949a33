#!/usr/bin/env python3
"""Validate garage YAML files against the schema and their own references."""
import sys
from pathlib import Path
from typing import List

import yaml
from jsonschema import validate, ValidationError

from gearwear import Garage, GearwearError, NotFound, load_schema
from gearwear.loader import garage_from_dict


def check_references(garage: Garage) -> List[str]:
    """Records pointing at parts, gear or plans the file does not define."""
    errors = []
    for part_id in sorted(set(garage.parts) & set(garage.gears)):
        errors.append(f"id {part_id} is used by a part and a gear")

    for att in garage.attachments.values():
        if att.part_id not in garage.parts:
            errors.append(f"attachment {att.id}: unknown part {att.part_id}")
        try:
            host = garage.get_host(att.gear_id)
        except NotFound:
            errors.append(f"attachment {att.id}: unknown gear or assembly {att.gear_id}")
            continue
        if not host.has_position(att.position):
            errors.append(f"attachment {att.id}: {att.gear_id} has no position {att.position!r}")

    for activity in garage.activities.values():
        if activity.gear_id is not None and activity.gear_id not in garage.gears:
            errors.append(f"activity {activity.id}: unknown gear {activity.gear_id}")

    for plan in garage.plans.values():
        if plan.part_id is not None and plan.part_id not in garage.parts:
            errors.append(f"plan {plan.id}: unknown part {plan.part_id}")

    for event in garage.events.values():
        if event.part_id not in garage.parts:
            errors.append(f"service event {event.id}: unknown part {event.part_id}")
        for plan_id in event.plans:
            if plan_id not in garage.plans:
                errors.append(f"service event {event.id}: unknown plan {plan_id}")

    for part_id in garage.usage:
        if part_id not in garage.parts:
            errors.append(f"usage of unknown part {part_id}")
    return errors


def validate_garage_file(filepath: Path, schema: dict) -> List[str]:
    """Validate a single garage YAML file. Returns list of errors."""
    errors = []
    try:
        with open(filepath) as f:
            data = yaml.safe_load(f)
        validate(instance=data or {}, schema=schema)
    except OSError as e:
        errors.append(f"Cannot read file: {e}")
    except yaml.YAMLError as e:
        errors.append(f"YAML parse error: {e}")
    except ValidationError as e:
        errors.append(f"Schema validation error: {e.message}")
        if e.path:
            errors.append(f"  at path: {'.'.join(str(p) for p in e.path)}")
    if errors:
        return errors

    try:
        garage = garage_from_dict(data)
    except (ValueError, GearwearError) as e:
        return [f"Data error: {e}"]
    return [f"Reference error: {e}" for e in check_references(garage)]


def main(argv=None):
    """Validate the garage files named on the command line."""
    paths = [Path(p) for p in (sys.argv[1:] if argv is None else argv)]
    if not paths:
        print("Usage: validate_garage.py GARAGE.yaml [GARAGE.yaml ...]")
        return 2

    schema = load_schema()
    all_valid = True
    for filepath in paths:
        errors = validate_garage_file(filepath, schema)
        if errors:
            print(f"FAIL: {filepath.name}")
            for error in errors:
                print(f"  {error}")
            all_valid = False
        else:
            print(f"OK: {filepath.name}")

    return 0 if all_valid else 1


if __name__ == "__main__":
    sys.exit(main())
