"""Status enum for service plan urgency levels."""

from enum import Enum


class Status(Enum):
    """Service status categories. Lower value = more urgent."""

    DUE = 1
    OK = 2
    SATISFIED = 3  # One-time plan that has been serviced
