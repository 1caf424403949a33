"""Helper functions for attribution and service due calculations."""

from datetime import datetime, timedelta
from fractions import Fraction
from typing import Optional

from .status import Status
from .usage import Usage


def micros(delta: timedelta) -> int:
    """Length of a timedelta in whole microseconds."""
    return delta // timedelta(microseconds=1)


def overlap(
    start: datetime, end: Optional[datetime], t0: datetime, t1: datetime
) -> Optional[tuple]:
    """
    Intersect the interval [start, end) with the closed range [t0, t1].

    ``end`` None means open-ended. Returns (lo, hi) or None when disjoint.
    """
    lo = max(start, t0)
    hi = t1 if end is None else min(end, t1)
    if lo > hi:
        return None
    return lo, hi


def scale(value: int, share: int, total: int) -> int:
    """Exact ``value * share / total`` rounded half to even."""
    if share == total:
        return value
    return round(Fraction(value * share, total))


def scale_usage(usage: Usage, share: int, total: int) -> Usage:
    """
    Credit the fraction share/total of an activity's usage.

    The activity still counts once for every part that received a share.
    """
    return Usage(
        duration=scale(usage.duration, share, total),
        distance=scale(usage.distance, share, total),
        elevation=scale(usage.elevation, share, total),
        descent=scale(usage.descent, share, total),
        energy=scale(usage.energy, share, total),
        count=usage.count,
    )


def calc_margin(since_baseline: int, threshold: int) -> int:
    """Remaining amount until the threshold; negative once overdue."""
    return threshold - since_baseline


def check_status(since_baseline: int, threshold: int) -> Status:
    """Determine status by comparing usage since baseline to the threshold."""
    if since_baseline >= threshold:
        return Status.DUE
    return Status.OK


def days_between(start: datetime, end: datetime) -> int:
    """Whole calendar days elapsed from start to end (never negative)."""
    return max((end - start).days, 0)
