"""Shared fixtures: a small garage with one road bike and a few parts."""

from datetime import datetime, timedelta, timezone

import pytest

from gearwear import Config, Garage, Gear, MemoryStore, MutationCoordinator, Part, User

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def day(n, hours=0, minutes=0):
    """Instant ``n`` days (plus hours/minutes) after T0."""
    return T0 + timedelta(days=n, hours=hours, minutes=minutes)


@pytest.fixture
def alice():
    return User("alice")


@pytest.fixture
def bob():
    return User("bob")


@pytest.fixture
def admin():
    return User("admin", is_admin=True)


@pytest.fixture
def garage():
    created = day(-30)
    return Garage(
        parts=[
            Part("chain-1", "chain", "alice", created, "KMC X11"),
            Part("chain-2", "chain", "alice", created, "KMC X11 spare"),
            Part("cassette-1", "cassette", "alice", created),
            Part("tire-1", "tire", "alice", created),
            Part("chain-bob", "chain", "bob", created),
        ],
        gears=[
            Gear("road", "alice", ["chain", "cassette", "front tire"], "Road bike"),
            Gear("gravel", "alice", ["chain"], "Gravel bike"),
            Gear("bob-bike", "bob", ["chain"]),
        ],
    )


@pytest.fixture
def store(garage):
    return MemoryStore(garage)


@pytest.fixture
def coordinator(store):
    return MutationCoordinator(store, Config(max_retries=3))
