import datetime
import random

import pytest

from gearwatch.derivation import (
    HEALTHY_ID,
    derive_notifications,
    sort_notifications,
)
from gearwatch.errors import DerivationInternalError
from gearwatch.models import (
    CheckoutSnapshot,
    CheckoutStatus,
    EquipmentSnapshot,
    EquipmentStatus,
    NotificationItem,
    NotificationType,
    Priority,
    RulesConfig,
    UserSnapshot,
)

NOW = datetime.datetime(2024, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)
DAY = datetime.timedelta(days=1)


def _equipment(eid="E1", status=EquipmentStatus.AVAILABLE, created_at=None, maintenance_since=None, name="Cordless drill"):
    return EquipmentSnapshot(
        id=eid,
        name=name,
        status=status,
        total_quantity=5,
        available_quantity=2,
        created_at=created_at or NOW - 100 * DAY,
        maintenance_since=maintenance_since,
    )


def _checkout(cid, due, equipment_id="E1", user_id="U1", status=CheckoutStatus.ACTIVE):
    return CheckoutSnapshot(
        id=cid,
        equipment_id=equipment_id,
        user_id=user_id,
        checkout_date=due - 14 * DAY,
        due_date=due,
        status=status,
    )


USERS = [UserSnapshot(id="U1", first_name="Ada", last_name="Lovelace")]


def _by_id(items):
    return {n.id: n for n in items}


def test_overdue_yesterday_is_low_priority():
    items = derive_notifications([_equipment()], [_checkout("C1", NOW - DAY)], NOW, users=USERS)

    assert len(items) == 1
    item = items[0]
    assert item.id == "overdue:C1"
    assert item.type == NotificationType.OVERDUE
    assert item.priority == Priority.LOW
    assert item.read is False
    assert item.created_at == NOW
    assert item.message == "Cordless drill borrowed by Ada Lovelace is 1 day(s) overdue"
    assert item.context.days_overdue == 1
    assert item.context.checkout_id == "C1"
    assert item.context.user_name == "Ada Lovelace"


@pytest.mark.parametrize(
    "age, expected",
    [
        (datetime.timedelta(hours=1), Priority.LOW),
        (3 * DAY, Priority.LOW),
        (4 * DAY, Priority.MEDIUM),
        (7 * DAY, Priority.MEDIUM),
        (8 * DAY, Priority.HIGH),
    ],
)
def test_overdue_priority_thresholds(age, expected):
    items = derive_notifications([_equipment()], [_checkout("C1", NOW - age)], NOW)

    assert items[0].type == NotificationType.OVERDUE
    assert items[0].priority == expected


def test_due_exactly_now_is_due_soon_not_overdue():
    items = derive_notifications([_equipment()], [_checkout("C1", NOW)], NOW)

    assert [n.id for n in items] == ["due_soon:C1"]
    assert items[0].priority == Priority.HIGH
    assert items[0].context.days_until_due == 0


@pytest.mark.parametrize(
    "ahead, expected",
    [
        (DAY, Priority.HIGH),
        (2 * DAY, Priority.MEDIUM),
        (3 * DAY, Priority.MEDIUM),
    ],
)
def test_due_soon_window_and_priority(ahead, expected):
    items = derive_notifications([_equipment()], [_checkout("C1", NOW + ahead)], NOW)

    assert items[0].type == NotificationType.DUE_SOON
    assert items[0].priority == expected


def test_due_beyond_window_yields_only_the_system_item():
    items = derive_notifications(
        [_equipment()], [_checkout("C1", NOW + 3 * DAY + datetime.timedelta(seconds=1))], NOW
    )

    assert [n.id for n in items] == [HEALTHY_ID]


def test_returned_loans_never_notify():
    items = derive_notifications(
        [_equipment()], [_checkout("C1", NOW - 10 * DAY, status=CheckoutStatus.RETURNED)], NOW
    )

    assert [n.id for n in items] == [HEALTHY_ID]


def test_stored_overdue_status_is_still_classified_by_date():
    items = derive_notifications(
        [_equipment()], [_checkout("C1", NOW + DAY, status=CheckoutStatus.OVERDUE)], NOW
    )

    assert [n.id for n in items] == ["due_soon:C1"]


def test_stale_maintenance_rules():
    equipment = [
        _equipment("E1", EquipmentStatus.MAINTENANCE, created_at=NOW - 45 * DAY, name="Laser level"),
        _equipment("E2", EquipmentStatus.MAINTENANCE, created_at=NOW - 61 * DAY),
        _equipment("E3", EquipmentStatus.MAINTENANCE, created_at=NOW - 30 * DAY),
        _equipment("E4", EquipmentStatus.AVAILABLE, created_at=NOW - 90 * DAY),
    ]

    items = _by_id(derive_notifications(equipment, [], NOW))

    assert set(items) == {"maintenance:E1", "maintenance:E2"}
    assert items["maintenance:E1"].priority == Priority.MEDIUM
    assert items["maintenance:E1"].message == "Laser level has been in maintenance for 45 days"
    assert items["maintenance:E2"].priority == Priority.HIGH
    assert items["maintenance:E2"].context.days_in_maintenance == 61


def test_maintenance_since_takes_precedence_over_created_at():
    equipment = [
        _equipment(
            "E1",
            EquipmentStatus.MAINTENANCE,
            created_at=NOW - 200 * DAY,
            maintenance_since=NOW - 10 * DAY,
        )
    ]

    assert [n.id for n in derive_notifications(equipment, [], NOW)] == [HEALTHY_ID]


def test_empty_inputs_emit_exactly_one_system_item():
    items = derive_notifications([], [], NOW)

    assert len(items) == 1
    assert items[0].type == NotificationType.SYSTEM
    assert items[0].priority == Priority.LOW


def test_unknown_equipment_and_user_fall_back():
    items = derive_notifications([], [_checkout("C1", NOW - 2 * DAY, equipment_id="X", user_id="U9")], NOW)

    assert items[0].message == "Unknown equipment borrowed by U9 is 2 day(s) overdue"
    assert items[0].context.equipment_name is None


def test_sorting_puts_high_first_and_low_last_regardless_of_input_order():
    checkouts = [
        _checkout("C-low", NOW - DAY),
        _checkout("C-med-1", NOW - 5 * DAY),
        _checkout("C-med-2", NOW + 2 * DAY),
        _checkout("C-high", NOW - 10 * DAY),
    ]
    for seed in range(5):
        shuffled = list(checkouts)
        random.Random(seed).shuffle(shuffled)
        items = derive_notifications([_equipment()], shuffled, NOW)

        priorities = [n.priority for n in items]
        assert priorities[0] == Priority.HIGH
        assert priorities[-1] == Priority.LOW
        assert priorities == sorted(priorities, reverse=True)


def test_derivation_is_idempotent_and_order_independent():
    equipment = [
        _equipment("E1"),
        _equipment("E2", EquipmentStatus.MAINTENANCE, created_at=NOW - 40 * DAY),
    ]
    checkouts = [
        _checkout("C1", NOW - 5 * DAY),
        _checkout("C2", NOW + 2 * DAY),
        _checkout("C3", NOW - 6 * DAY),
    ]

    first = derive_notifications(equipment, checkouts, NOW, users=USERS)
    second = derive_notifications(equipment, checkouts, NOW, users=USERS)
    reversed_inputs = derive_notifications(
        list(reversed(equipment)), list(reversed(checkouts)), NOW, users=USERS
    )

    assert first == second == reversed_inputs
    # medium ties are broken by id
    assert [n.id for n in first] == ["due_soon:C2", "maintenance:E2", "overdue:C1", "overdue:C3"]


def test_sort_prefers_newer_pass_on_equal_priority():
    older = NotificationItem(
        id="a", type=NotificationType.OVERDUE, title="", message="",
        priority=Priority.MEDIUM, created_at=NOW - DAY,
    )
    newer = NotificationItem(
        id="b", type=NotificationType.OVERDUE, title="", message="",
        priority=Priority.MEDIUM, created_at=NOW,
    )

    assert [n.id for n in sort_notifications([older, newer])] == ["b", "a"]


def test_custom_rules_change_thresholds():
    rules = RulesConfig(overdue_medium_days=0, overdue_high_days=1)

    items = derive_notifications([_equipment()], [_checkout("C1", NOW - 2 * DAY)], NOW, rules=rules)

    assert items[0].priority == Priority.HIGH


def test_naive_timestamps_raise_internal_error():
    naive_due = datetime.datetime(2024, 2, 1, 12, 0)

    with pytest.raises(DerivationInternalError):
        derive_notifications([_equipment()], [_checkout("C1", naive_due)], NOW)


def test_duplicate_source_rows_raise_internal_error():
    checkouts = [_checkout("C1", NOW - DAY), _checkout("C1", NOW - 2 * DAY)]

    with pytest.raises(DerivationInternalError):
        derive_notifications([_equipment()], checkouts, NOW)
