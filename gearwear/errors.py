"""Error taxonomy for the usage accounting core."""


class GearwearError(Exception):
    """Base class for every error raised by gearwear."""


class NotFound(GearwearError):
    """A referenced record does not exist."""


class Conflict(GearwearError):
    """An interval or identity constraint would be violated."""


class InvalidRange(GearwearError):
    """A time range or metric is out of bounds (end before start, negative duration)."""


class StaleVersion(GearwearError):
    """A concurrent writer committed first. Retried by the coordinator."""


class Forbidden(GearwearError):
    """The actor may not modify the record's owner."""


class DatabaseFailure(GearwearError):
    """Opaque persistence failure. Never retried, never swallowed."""


# Errors detected before any state change; safe to hand back to the caller.
VALIDATION_ERRORS = (NotFound, Conflict, InvalidRange, Forbidden)
