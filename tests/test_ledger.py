#!/usr/bin/env python3
"""Tests for the activity ledger."""

import pytest

from gearwear import Attachment, InvalidRange, NotFound, Usage
from gearwear.attribution import AttributionEngine
from gearwear.intervals import IntervalStore
from gearwear.ledger import ActivityLedger, validate_activity

from conftest import day

FULL = Usage(duration=7200, distance=50000, count=1)


@pytest.fixture
def txn(store, garage):
    garage.attachments["a1"] = Attachment("a1", "chain-1", "road", "chain", day(0))
    garage.attachments["a2"] = Attachment("a2", "chain-2", "gravel", "chain", day(0))
    return store.begin()


@pytest.fixture
def ledger(txn):
    return ActivityLedger(txn, AttributionEngine(IntervalStore(txn)))


def new_ride(ledger, **overrides):
    fields = dict(owner="alice", gear_id="road", start=day(1), duration=7200, distance=50000)
    fields.update(overrides)
    return ledger.new_activity(**fields)


class TestRecord:
    """Tests for ActivityLedger.record."""

    def test_stores_activity(self, ledger):
        activity = new_ride(ledger)
        assert ledger.record(activity) == activity.id
        assert ledger.get(activity.id) is activity

    def test_claims_gear_slots(self, txn, ledger):
        ledger.record(new_ride(ledger))
        assert ("slots", "road/chain") in txn.written
        assert ("slots", "road/front tire") in txn.written

    def test_zero_duration_is_recorded(self, ledger):
        activity = new_ride(ledger, duration=0)
        ledger.record(activity)
        assert activity.id in ledger.garage.activities

    def test_negative_duration(self, ledger):
        with pytest.raises(InvalidRange):
            new_ride(ledger, duration=-1)

    def test_negative_metric(self, ledger):
        with pytest.raises(InvalidRange):
            new_ride(ledger, distance=-5)

    def test_unknown_gear(self, ledger):
        with pytest.raises(NotFound):
            new_ride(ledger, gear_id="tandem")

    def test_for_owner(self, ledger):
        first = new_ride(ledger, start=day(3))
        second = new_ride(ledger, start=day(1))
        ledger.record(first)
        ledger.record(second)
        assert ledger.for_owner("alice") == [second, first]
        assert ledger.for_owner("bob") == []


class TestEdit:
    """Tests for ActivityLedger.edit."""

    def test_metric_change_reports_delta(self, ledger):
        activity = new_ride(ledger)
        ledger.record(activity)
        delta = ledger.edit(activity.id, {"distance": 60000})
        assert delta == {"chain-1": Usage(distance=10000)}

    def test_gear_change_reports_union(self, ledger):
        activity = new_ride(ledger)
        ledger.record(activity)
        delta = ledger.edit(activity.id, {"gear_id": "gravel"})
        assert delta == {"chain-1": -FULL, "chain-2": FULL}

    def test_moving_out_of_all_intervals(self, ledger):
        activity = new_ride(ledger)
        ledger.record(activity)
        delta = ledger.edit(activity.id, {"start": day(-5)})
        assert delta == {"chain-1": -FULL}

    def test_unknown_field(self, ledger):
        activity = new_ride(ledger)
        ledger.record(activity)
        with pytest.raises(InvalidRange):
            ledger.edit(activity.id, {"owner": "bob"})

    def test_invalid_edit_leaves_activity(self, ledger):
        activity = new_ride(ledger)
        ledger.record(activity)
        with pytest.raises(InvalidRange):
            ledger.edit(activity.id, {"duration": -1})
        assert ledger.get(activity.id).duration == 7200

    def test_unknown_activity(self, ledger):
        with pytest.raises(NotFound):
            ledger.edit("nope", {"distance": 1})


class TestDelete:
    """Tests for ActivityLedger.delete."""

    def test_reports_removed_usage(self, ledger):
        activity = new_ride(ledger)
        ledger.record(activity)
        assert ledger.delete(activity.id) == {"chain-1": -FULL}
        assert activity.id not in ledger.garage.activities

    def test_second_delete_not_found(self, ledger):
        activity = new_ride(ledger)
        ledger.record(activity)
        ledger.delete(activity.id)
        with pytest.raises(NotFound):
            ledger.delete(activity.id)

    def test_zero_duration_delete_reports_nothing(self, ledger):
        activity = new_ride(ledger, duration=0)
        ledger.record(activity)
        assert ledger.delete(activity.id) == {}


class TestValidateActivity:
    """Tests for validate_activity."""

    def test_optional_metrics_may_be_missing(self, ledger):
        validate_activity(new_ride(ledger, moving_time=None, descent=None))

    def test_negative_moving_time(self, ledger):
        with pytest.raises(InvalidRange):
            new_ride(ledger, moving_time=-1)
