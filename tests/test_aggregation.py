import datetime
import logging
import random

import pytest

from gearwatch.aggregation import compute_counters
from gearwatch.errors import MalformedSnapshot
from gearwatch.models import (
    CheckoutSnapshot,
    CheckoutStatus,
    EquipmentSnapshot,
    EquipmentStatus,
)

NOW = datetime.datetime(2024, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)
DAY = datetime.timedelta(days=1)


def _equipment(eid: str, total: int, available: int, status=EquipmentStatus.AVAILABLE) -> EquipmentSnapshot:
    return EquipmentSnapshot(
        id=eid,
        name=f"Item {eid}",
        status=status,
        total_quantity=total,
        available_quantity=available,
        created_at=NOW - 100 * DAY,
    )


def _checkout(cid: str, equipment_id: str, due: datetime.datetime, status=CheckoutStatus.ACTIVE) -> CheckoutSnapshot:
    return CheckoutSnapshot(
        id=cid,
        equipment_id=equipment_id,
        user_id="U1",
        checkout_date=due - 7 * DAY,
        due_date=due,
        status=status,
    )


def test_single_overdue_loan_scenario():
    equipment = [_equipment("E1", total=5, available=2)]
    checkouts = [_checkout("C1", "E1", NOW - DAY)]

    counters = compute_counters(equipment, checkouts, NOW)

    assert counters.available_equipment == 2
    assert counters.checked_out_equipment == 1
    assert counters.overdue_equipment == 1
    assert counters.unread_notifications == 0


def test_empty_inputs_give_zero_counters():
    counters = compute_counters([], [], NOW)

    assert counters.available_equipment == 0
    assert counters.checked_out_equipment == 0
    assert counters.overdue_equipment == 0


def test_available_sum_ignores_order_and_status():
    equipment = [
        _equipment("E1", 5, 2),
        _equipment("E2", 3, 3, status=EquipmentStatus.RETIRED),
        _equipment("E3", 4, 1, status=EquipmentStatus.MAINTENANCE),
    ]
    shuffled = list(equipment)
    random.Random(7).shuffle(shuffled)

    assert compute_counters(equipment, [], NOW).available_equipment == 6
    assert compute_counters(shuffled, [], NOW).available_equipment == 6


def test_overdue_count_follows_the_clock():
    equipment = [_equipment("E1", 5, 0)]
    checkouts = [
        _checkout("C1", "E1", NOW + DAY),
        _checkout("C2", "E1", NOW + 2 * DAY),
        _checkout("C3", "E1", NOW - DAY),
    ]

    before_all = NOW - 2 * DAY
    after_all = NOW + 3 * DAY

    assert compute_counters(equipment, checkouts, before_all).overdue_equipment == 0
    assert compute_counters(equipment, checkouts, NOW).overdue_equipment == 1
    assert compute_counters(equipment, checkouts, after_all).overdue_equipment == 3


def test_due_exactly_now_is_not_overdue():
    counters = compute_counters([_equipment("E1", 1, 0)], [_checkout("C1", "E1", NOW)], NOW)

    assert counters.overdue_equipment == 0


def test_checked_out_counts_rows_with_known_equipment_only():
    equipment = [_equipment("E1", 5, 2)]
    checkouts = [
        _checkout("C1", "E1", NOW + DAY),
        _checkout("C2", "E1", NOW + DAY),
        _checkout("C3", "GONE", NOW + DAY),
    ]

    assert compute_counters(equipment, checkouts, NOW).checked_out_equipment == 2


def test_returned_rows_are_filtered_out_but_stored_overdue_counts():
    equipment = [_equipment("E1", 5, 2)]
    checkouts = [
        _checkout("C1", "E1", NOW - DAY, status=CheckoutStatus.RETURNED),
        _checkout("C2", "E1", NOW - DAY, status=CheckoutStatus.OVERDUE),
    ]

    counters = compute_counters(equipment, checkouts, NOW)

    assert counters.checked_out_equipment == 1
    assert counters.overdue_equipment == 1


def test_quantity_anomalies_are_logged_not_clamped(caplog):
    equipment = [_equipment("E1", 2, 5), _equipment("E2", 2, -4)]

    with caplog.at_level(logging.WARNING, logger="gearwatch.aggregation"):
        counters = compute_counters(equipment, [], NOW)

    assert counters.available_equipment == 1
    assert "E1" in caplog.text
    assert "E2" in caplog.text


@pytest.mark.parametrize("equipment, checkouts", [(None, []), ([], None)])
def test_missing_inputs_raise_instead_of_zero(equipment, checkouts):
    with pytest.raises(MalformedSnapshot):
        compute_counters(equipment, checkouts, NOW)


def test_unexpected_entries_raise_malformed():
    with pytest.raises(MalformedSnapshot):
        compute_counters([{"id": "E1"}], [], NOW)
