from __future__ import annotations

import datetime
import logging
from typing import Any, Iterable, List, Mapping, Optional

from .errors import MalformedSnapshot
from .models import (
    CheckoutSnapshot,
    CheckoutStatus,
    EquipmentSnapshot,
    EquipmentStatus,
    UserSnapshot,
)

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    """Turn a service timestamp into an aware UTC datetime.

    Accepts ISO 8601 strings (with or without a trailing ``Z``), plain
    dates and datetime objects. Naive values are taken to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        ts = value
    elif isinstance(value, datetime.date):
        ts = datetime.datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            ts = datetime.datetime.fromisoformat(text)
        except ValueError as exc:
            raise MalformedSnapshot(f"invalid timestamp {value!r}") from exc
    else:
        raise MalformedSnapshot(f"invalid timestamp {value!r}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return ts


def _field(row: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in row and row[name] is not None:
            return row[name]
    return default


def _required(row: Mapping[str, Any], kind: str, *names: str) -> Any:
    value = _field(row, *names)
    if value is None or value == "":
        row_id = row.get("id", "?")
        raise MalformedSnapshot(f"{kind} {row_id}: missing required field '{names[0]}'")
    return value


def _quantity(row: Mapping[str, Any], *names: str) -> int:
    raw = _field(row, *names, default=0)
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedSnapshot(
            f"equipment {row.get('id', '?')}: invalid {names[0]} {raw!r}"
        ) from exc


def equipment_from_row(row: Mapping[str, Any]) -> EquipmentSnapshot:
    if not isinstance(row, Mapping):
        raise MalformedSnapshot(f"equipment row must be a mapping (got {type(row).__name__})")
    status_raw = _required(row, "equipment", "status")
    try:
        status = EquipmentStatus.from_string(status_raw)
    except ValueError as exc:
        raise MalformedSnapshot(f"equipment {row.get('id', '?')}: {exc}") from exc
    return EquipmentSnapshot(
        id=str(_required(row, "equipment", "id")),
        name=str(_field(row, "name", default="")),
        status=status,
        total_quantity=_quantity(row, "total_quantity", "totalQuantity"),
        available_quantity=_quantity(row, "available_quantity", "availableQuantity"),
        created_at=parse_timestamp(
            _required(row, "equipment", "created_at", "createdAt", "added_date", "addedDate")
        ),
        maintenance_since=parse_timestamp(
            _field(row, "maintenance_since", "maintenanceSince")
        ),
    )


def checkout_from_row(row: Mapping[str, Any]) -> CheckoutSnapshot:
    if not isinstance(row, Mapping):
        raise MalformedSnapshot(f"checkout row must be a mapping (got {type(row).__name__})")
    status_raw = _required(row, "checkout", "status")
    try:
        status = CheckoutStatus.from_string(status_raw)
    except ValueError as exc:
        raise MalformedSnapshot(f"checkout {row.get('id', '?')}: {exc}") from exc
    return CheckoutSnapshot(
        id=str(_required(row, "checkout", "id")),
        equipment_id=str(_required(row, "checkout", "equipment_id", "equipmentId")),
        user_id=str(_required(row, "checkout", "user_id", "userId")),
        checkout_date=parse_timestamp(
            _required(row, "checkout", "checkout_date", "checkoutDate")
        ),
        due_date=parse_timestamp(_required(row, "checkout", "due_date", "dueDate")),
        status=status,
        return_date=parse_timestamp(_field(row, "return_date", "returnDate")),
    )


def user_from_row(row: Mapping[str, Any]) -> UserSnapshot:
    if not isinstance(row, Mapping):
        raise MalformedSnapshot(f"user row must be a mapping (got {type(row).__name__})")
    return UserSnapshot(
        id=str(_required(row, "user", "id")),
        first_name=str(_field(row, "first_name", "firstName", default="")),
        last_name=str(_field(row, "last_name", "lastName", default="")),
        department=_field(row, "department"),
    )


def _rows(rows: Any, kind: str) -> Iterable[Mapping[str, Any]]:
    if not isinstance(rows, list):
        raise MalformedSnapshot(f"{kind} payload must be a list (got {type(rows).__name__})")
    return rows


def parse_equipment(rows: Any) -> List[EquipmentSnapshot]:
    return [equipment_from_row(r) for r in _rows(rows, "equipment")]


def parse_checkouts(rows: Any) -> List[CheckoutSnapshot]:
    return [checkout_from_row(r) for r in _rows(rows, "checkouts")]


def parse_users(rows: Any) -> List[UserSnapshot]:
    return [user_from_row(r) for r in _rows(rows, "users")]
