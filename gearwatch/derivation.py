"""Rule-based derivation of notification candidates from snapshots."""

import datetime
import logging
from typing import Dict, List, Optional, Sequence

from .errors import DerivationInternalError
from .models import (
    CheckoutSnapshot,
    EquipmentSnapshot,
    EquipmentStatus,
    NotificationContext,
    NotificationItem,
    NotificationType,
    Priority,
    RulesConfig,
    UserSnapshot,
)

logger = logging.getLogger(__name__)

ONE_DAY = datetime.timedelta(days=1)
UNKNOWN_EQUIPMENT = "Unknown equipment"

HEALTHY_ID = "system:healthy"
UNAVAILABLE_ID = "system:unavailable"


def notification_id(kind: NotificationType, source_id: str) -> str:
    return f"{kind.value}:{source_id}"


def _whole_days(delta: datetime.timedelta, what: str, source_id: str) -> int:
    days = delta // ONE_DAY
    if days < 0:
        raise DerivationInternalError(f"{what} for {source_id} is negative ({days} days)")
    return days


def overdue_priority(days_overdue: int, rules: RulesConfig) -> Priority:
    if days_overdue > rules.overdue_high_days:
        return Priority.HIGH
    if days_overdue > rules.overdue_medium_days:
        return Priority.MEDIUM
    return Priority.LOW


def due_soon_priority(days_until_due: int, rules: RulesConfig) -> Priority:
    if days_until_due <= rules.due_soon_high_days:
        return Priority.HIGH
    return Priority.MEDIUM


def maintenance_priority(days_in_maintenance: int, rules: RulesConfig) -> Priority:
    if days_in_maintenance > rules.maintenance_high_days:
        return Priority.HIGH
    return Priority.MEDIUM


def _loan_context(
    checkout: CheckoutSnapshot,
    equipment: Optional[EquipmentSnapshot],
    user_name: str,
    **extra,
) -> NotificationContext:
    return NotificationContext(
        equipment_id=checkout.equipment_id,
        equipment_name=equipment.display_name if equipment else None,
        user_id=checkout.user_id,
        user_name=user_name,
        checkout_id=checkout.id,
        due_date=checkout.due_date,
        **extra,
    )


def _overdue_item(checkout, equipment, user_name, now, rules) -> NotificationItem:
    days = _whole_days(now - checkout.due_date, "days overdue", checkout.id)
    equipment_name = equipment.display_name if equipment else UNKNOWN_EQUIPMENT
    return NotificationItem(
        id=notification_id(NotificationType.OVERDUE, checkout.id),
        type=NotificationType.OVERDUE,
        title="Equipment overdue",
        message=f"{equipment_name} borrowed by {user_name} is {days} day(s) overdue",
        priority=overdue_priority(days, rules),
        created_at=now,
        context=_loan_context(checkout, equipment, user_name, days_overdue=days),
    )


def _due_soon_item(checkout, equipment, user_name, now, rules) -> NotificationItem:
    days = _whole_days(checkout.due_date - now, "days until due", checkout.id)
    equipment_name = equipment.display_name if equipment else UNKNOWN_EQUIPMENT
    return NotificationItem(
        id=notification_id(NotificationType.DUE_SOON, checkout.id),
        type=NotificationType.DUE_SOON,
        title="Return due soon",
        message=f"{equipment_name} borrowed by {user_name} is due back in {days} day(s)",
        priority=due_soon_priority(days, rules),
        created_at=now,
        context=_loan_context(checkout, equipment, user_name, days_until_due=days),
    )


def _maintenance_item(item: EquipmentSnapshot, since, now, rules) -> NotificationItem:
    days = _whole_days(now - since, "days in maintenance", item.id)
    return NotificationItem(
        id=notification_id(NotificationType.MAINTENANCE, item.id),
        type=NotificationType.MAINTENANCE,
        title="Extended maintenance",
        message=f"{item.display_name} has been in maintenance for {days} days",
        priority=maintenance_priority(days, rules),
        created_at=now,
        context=NotificationContext(
            equipment_id=item.id,
            equipment_name=item.display_name,
            days_in_maintenance=days,
        ),
    )


def healthy_item(now: datetime.datetime) -> NotificationItem:
    return NotificationItem(
        id=HEALTHY_ID,
        type=NotificationType.SYSTEM,
        title="Notifications active",
        message=(
            "Nothing needs attention. Overdue loans, upcoming returns and "
            "extended maintenance are checked automatically."
        ),
        priority=Priority.LOW,
        created_at=now,
    )


def unavailable_item(now: datetime.datetime, reason: str) -> NotificationItem:
    return NotificationItem(
        id=UNAVAILABLE_ID,
        type=NotificationType.SYSTEM,
        title="Notifications unavailable",
        message=f"Notifications could not be computed for this refresh: {reason}",
        priority=Priority.HIGH,
        created_at=now,
    )


def sort_notifications(items: Sequence[NotificationItem]) -> List[NotificationItem]:
    """Order by priority, then newest pass first, then id."""
    return sorted(items, key=lambda n: n.sort_key())


def derive_notifications(
    equipment: Sequence[EquipmentSnapshot],
    checkouts: Sequence[CheckoutSnapshot],
    now: datetime.datetime,
    users: Sequence[UserSnapshot] = (),
    rules: Optional[RulesConfig] = None,
) -> List[NotificationItem]:
    """Scan snapshots for overdue, due-soon and stale-maintenance conditions.

    Overdue and due-soon windows are disjoint: a due date equal to `now`
    counts as due soon. When nothing matches, a single low priority system
    item is emitted so an empty feed can be told apart from a failed fetch.

    The result is sorted and fully determined by the inputs and `now`.

    Raises:
        DerivationInternalError: when a rule meets an impossible state, such
            as timestamps that cannot be compared with `now`
    """
    rules = rules or RulesConfig()
    equipment_by_id: Dict[str, EquipmentSnapshot] = {e.id: e for e in equipment}
    user_names: Dict[str, str] = {u.id: u.display_name for u in users}
    due_soon_limit = now + datetime.timedelta(days=rules.due_soon_days)
    stale_before = now - datetime.timedelta(days=rules.maintenance_stale_days)

    items: List[NotificationItem] = []
    try:
        for checkout in sorted(checkouts, key=lambda c: c.id):
            if not checkout.on_loan:
                continue
            eq = equipment_by_id.get(checkout.equipment_id)
            user_name = user_names.get(checkout.user_id, checkout.user_id)
            if checkout.due_date < now:
                items.append(_overdue_item(checkout, eq, user_name, now, rules))
            elif checkout.due_date <= due_soon_limit:
                items.append(_due_soon_item(checkout, eq, user_name, now, rules))

        for item in sorted(equipment, key=lambda e: e.id):
            if item.status != EquipmentStatus.MAINTENANCE:
                continue
            since = item.maintenance_since or item.created_at
            if since < stale_before:
                items.append(_maintenance_item(item, since, now, rules))
    except TypeError as exc:
        # Mixing naive and aware timestamps ends up here.
        raise DerivationInternalError(f"cannot compare snapshot timestamps: {exc}") from exc

    seen = set()
    for n in items:
        if n.id in seen:
            raise DerivationInternalError(f"duplicate notification id {n.id}")
        seen.add(n.id)

    if not items:
        items.append(healthy_item(now))

    logger.debug(f"Derived {len(items)} notification candidates")
    return sort_notifications(items)
