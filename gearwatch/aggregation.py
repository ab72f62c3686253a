import datetime
import logging
from typing import Optional, Sequence

from .errors import MalformedSnapshot
from .models import AggregateCounters, CheckoutSnapshot, EquipmentSnapshot

logger = logging.getLogger(__name__)


def _check_quantities(item: EquipmentSnapshot) -> None:
    if item.available_quantity < 0:
        logger.warning(
            f"Equipment {item.id} reports negative available quantity {item.available_quantity}"
        )
    elif item.available_quantity > item.total_quantity:
        logger.warning(
            f"Equipment {item.id} reports available quantity {item.available_quantity} "
            f"above total quantity {item.total_quantity}"
        )


def compute_counters(
    equipment: Optional[Sequence[EquipmentSnapshot]],
    checkouts: Optional[Sequence[CheckoutSnapshot]],
    now: datetime.datetime,
    unread_notifications: int = 0,
) -> AggregateCounters:
    """Fold equipment and active-checkout snapshots into dashboard counters.

    Quantities are summed exactly as reported by the data service, whatever
    the equipment status; anomalies are logged, never clamped. Only checkouts
    still on loan are counted, so a provider that ignores the status filter
    does not skew the result.

    Args:
        equipment: Equipment snapshots for this pass
        checkouts: Checkout snapshots for this pass
        now: Evaluation time for the overdue comparison
        unread_notifications: Unread count taken from the reconciled store

    Returns:
        A complete AggregateCounters record

    Raises:
        MalformedSnapshot: if either input is missing or not snapshot data
    """
    if equipment is None or checkouts is None:
        raise MalformedSnapshot("equipment and checkout snapshots are required")

    available = 0
    known_ids = set()
    for item in equipment:
        if not isinstance(item, EquipmentSnapshot):
            raise MalformedSnapshot(f"unexpected equipment entry {item!r}")
        _check_quantities(item)
        available += item.available_quantity
        known_ids.add(item.id)

    checked_out = 0
    overdue = 0
    for checkout in checkouts:
        if not isinstance(checkout, CheckoutSnapshot):
            raise MalformedSnapshot(f"unexpected checkout entry {checkout!r}")
        if not checkout.on_loan:
            continue
        if checkout.equipment_id in known_ids:
            checked_out += 1
        else:
            logger.debug(
                f"Checkout {checkout.id} references unknown equipment {checkout.equipment_id}"
            )
        if checkout.due_date < now:
            overdue += 1

    if available < 0:
        logger.warning(f"Total available equipment is negative ({available})")

    return AggregateCounters(
        available_equipment=available,
        checked_out_equipment=checked_out,
        overdue_equipment=overdue,
        unread_notifications=max(0, int(unread_notifications)),
        computed_at=now,
    )
