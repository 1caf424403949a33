#!/usr/bin/env python3
"""
Tests for the attribution engine.

Credit rules:
1. Every mount position of the gear is credited on its own, in full
2. Within a position the window is split by the time each part was mounted
3. A part removed exactly at the activity start keeps it over its successor
4. Subparts of an assembly are credited with the assembly
5. Zero-duration or gear-less activities credit nobody
"""

from fractions import Fraction

import pytest

from gearwear import Activity, Attachment, Gear, MemoryStore, Part, Usage, ZERO
from gearwear.attribution import Attribution, AttributionEngine, diff, owner_at
from gearwear.intervals import IntervalStore

from conftest import day


def ride(start, hours=2, gear="road", **metrics):
    metrics.setdefault("distance", 50000)
    return Activity("ride", "alice", gear, start, duration=int(hours * 3600), **metrics)


@pytest.fixture
def engine_for(garage):
    """Build an engine over the garage plus the given attachments."""

    def build(*attachments):
        for att in attachments:
            garage.attachments[att.id] = att
        txn = MemoryStore(garage).begin()
        return AttributionEngine(IntervalStore(txn))

    return build


class TestSinglePart:
    """Tests for an activity fully inside one attachment."""

    def test_full_credit(self, engine_for):
        engine = engine_for(Attachment("a1", "chain-1", "road", "chain", day(0), day(10)))
        result = engine.attribute(ride(day(5)))
        [credit] = result.credits
        assert credit.part_id == "chain-1"
        assert credit.position == "chain"
        assert credit.fraction == 1
        assert credit.usage == Usage(duration=7200, distance=50000, count=1)

    def test_open_attachment(self, engine_for):
        engine = engine_for(Attachment("a1", "chain-1", "road", "chain", day(0)))
        assert engine.attribute(ride(day(50))).for_part("chain-1").distance == 50000

    def test_activity_before_attachment(self, engine_for):
        engine = engine_for(Attachment("a1", "chain-1", "road", "chain", day(3)))
        assert engine.attribute(ride(day(1))).credits == []

    def test_other_gear_not_credited(self, engine_for):
        engine = engine_for(Attachment("a1", "chain-1", "gravel", "chain", day(0)))
        assert engine.attribute(ride(day(1))).credits == []


class TestPositions:
    """Tests for crediting several mount positions."""

    def test_each_position_gets_full_distance(self, engine_for):
        engine = engine_for(
            Attachment("a1", "chain-1", "road", "chain", day(0)),
            Attachment("a2", "cassette-1", "road", "cassette", day(0)),
        )
        by_part = engine.attribute(ride(day(1))).by_part()
        assert by_part["chain-1"].distance == 50000
        assert by_part["cassette-1"].distance == 50000

    def test_empty_position_yields_no_entry(self, engine_for):
        engine = engine_for(Attachment("a1", "chain-1", "road", "chain", day(0)))
        result = engine.attribute(ride(day(1)))
        assert {c.position for c in result.credits} == {"chain"}


class TestMidActivitySwap:
    """Tests for a part replaced during the activity."""

    def test_split_by_time(self, engine_for):
        engine = engine_for(
            Attachment("a1", "chain-1", "road", "chain", day(0), day(1, hours=1)),
            Attachment("a2", "chain-2", "road", "chain", day(1, hours=1)),
        )
        result = engine.attribute(ride(day(1), hours=2, distance=1000))
        fractions = {c.part_id: c.fraction for c in result.credits}
        assert fractions == {"chain-1": Fraction(1, 2), "chain-2": Fraction(1, 2)}
        assert result.for_part("chain-1") == Usage(duration=3600, distance=500, count=1)
        assert result.for_part("chain-2") == Usage(duration=3600, distance=500, count=1)

    def test_uneven_split_rounds_and_sums(self, engine_for):
        engine = engine_for(
            Attachment("a1", "chain-1", "road", "chain", day(0), day(1, minutes=20)),
            Attachment("a2", "chain-2", "road", "chain", day(1, minutes=20)),
        )
        result = engine.attribute(ride(day(1), hours=1, distance=1000))
        assert result.for_part("chain-1").distance == 333
        assert result.for_part("chain-2").distance == 667

    def test_gap_in_position_is_not_credited(self, engine_for):
        engine = engine_for(
            Attachment("a1", "chain-1", "road", "chain", day(0), day(1, hours=1)),
        )
        result = engine.attribute(ride(day(1), hours=2, distance=1000))
        [credit] = result.credits
        assert credit.fraction == Fraction(1, 2)
        assert credit.usage.distance == 500


class TestBoundary:
    """Tests for swaps exactly at the activity start or end."""

    def test_attachment_ending_at_start_keeps_credit(self, engine_for):
        engine = engine_for(
            Attachment("a1", "chain-1", "road", "chain", day(0), day(5)),
            Attachment("a2", "chain-2", "road", "chain", day(5), day(10)),
        )
        result = engine.attribute(ride(day(5)))
        assert result.for_part("chain-1").distance == 50000
        assert result.for_part("chain-2") == ZERO

    def test_attachment_starting_at_end_gets_nothing(self, engine_for):
        engine = engine_for(
            Attachment("a1", "chain-1", "road", "chain", day(0), day(5, hours=2)),
            Attachment("a2", "chain-2", "road", "chain", day(5, hours=2)),
        )
        result = engine.attribute(ride(day(5)))
        assert result.parts == {"chain-1"}

    def test_owner_at_prefers_ending_interval_at_start(self):
        ending = Attachment("a1", "chain-1", "road", "chain", day(0), day(5))
        starting = Attachment("a2", "chain-2", "road", "chain", day(5))
        assert owner_at([ending, starting], day(5), at_start=True) is ending
        assert owner_at([ending, starting], day(5)) is starting


class TestNoCredit:
    """Tests for activities that credit nobody."""

    def test_zero_duration(self, engine_for):
        engine = engine_for(Attachment("a1", "chain-1", "road", "chain", day(0)))
        assert engine.attribute(ride(day(1), hours=0)).credits == []

    def test_no_gear(self, engine_for):
        engine = engine_for(Attachment("a1", "chain-1", "road", "chain", day(0)))
        assert engine.attribute(ride(day(1), gear=None)).credits == []

    def test_no_activity(self, engine_for):
        assert engine_for().attribute(None).credits == []


class TestDiff:
    """Tests for diff between attributions."""

    def test_union_of_parts(self, engine_for):
        engine = engine_for(
            Attachment("a1", "chain-1", "road", "chain", day(0)),
            Attachment("a2", "chain-2", "gravel", "chain", day(0)),
        )
        before = engine.attribute(ride(day(1), gear="road"))
        after = engine.attribute(ride(day(1), gear="gravel"))
        delta = diff(before, after)
        assert delta["chain-1"] == -Usage(duration=7200, distance=50000, count=1)
        assert delta["chain-2"] == Usage(duration=7200, distance=50000, count=1)

    def test_unchanged_part_has_zero_delta(self, engine_for):
        engine = engine_for(Attachment("a1", "chain-1", "road", "chain", day(0)))
        same = engine.attribute(ride(day(1)))
        assert diff(same, same) == {"chain-1": ZERO}

    def test_against_nothing(self):
        assert diff(Attribution(""), Attribution("")) == {}


class TestRemovalAtStart:
    """A part taken off exactly at the activity start, with nothing after it."""

    def test_empty_position_gets_no_credit(self, engine_for):
        engine = engine_for(Attachment("a1", "chain-1", "road", "chain", day(0), day(5)))
        assert engine.attribute(ride(day(5))).credits == []

    def test_owner_at_without_successor(self):
        ending = Attachment("a1", "chain-1", "road", "chain", day(0), day(5))
        assert owner_at([ending], day(5), at_start=True) is None


# =============================================================================
# Assemblies
# =============================================================================


@pytest.fixture
def wheeled(garage):
    """Mountain bike whose front wheel carries the tire."""
    garage.parts["wheel-1"] = Part("wheel-1", "wheel", "alice", day(-30), positions=["tire"])
    garage.gears["mtb"] = Gear("mtb", "alice", ["front wheel"])
    return garage


class TestAssemblies:
    """Subparts are credited whenever their assembly is."""

    def test_subpart_rides_along(self, wheeled, engine_for):
        engine = engine_for(
            Attachment("a1", "wheel-1", "mtb", "front wheel", day(0)),
            Attachment("a2", "tire-1", "wheel-1", "tire", day(0)),
        )
        result = engine.attribute(ride(day(1), gear="mtb"))
        assert [(c.position, c.part_id) for c in result.credits] == [
            ("front wheel", "wheel-1"),
            ("front wheel/tire", "tire-1"),
        ]
        assert result.for_part("tire-1").distance == 50000
        assert result.slots == {"mtb/front wheel", "wheel-1/tire"}

    def test_subpart_credited_only_while_assembly_mounted(self, wheeled, engine_for):
        engine = engine_for(
            Attachment("a1", "wheel-1", "mtb", "front wheel", day(0), day(1, hours=1)),
            Attachment("a2", "tire-1", "wheel-1", "tire", day(0)),
        )
        result = engine.attribute(ride(day(1), hours=2, distance=1000))
        assert result.for_part("wheel-1").distance == 500
        assert result.for_part("tire-1").distance == 500

    def test_subpart_swapped_during_ride(self, wheeled, engine_for):
        engine = engine_for(
            Attachment("a1", "wheel-1", "mtb", "front wheel", day(0)),
            Attachment("a2", "tire-1", "wheel-1", "tire", day(0), day(1, hours=1)),
        )
        result = engine.attribute(ride(day(1), hours=2, distance=1000))
        assert result.for_part("wheel-1").distance == 1000
        assert result.for_part("tire-1").distance == 500

    def test_unmounted_assembly_credits_nobody(self, wheeled, engine_for):
        engine = engine_for(Attachment("a2", "tire-1", "wheel-1", "tire", day(0)))
        assert engine.attribute(ride(day(1), gear="mtb")).credits == []
