import dataclasses
import datetime
import enum
from typing import Dict, List, Optional


class Priority(enum.IntEnum):
    """Priority levels for notifications.

    Higher values are shown first in the feed and are
    used for alerting decisions.
    """
    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @classmethod
    def from_string(cls, value: str) -> "Priority":
        value = str(value).upper()
        if value not in cls.__members__:
            raise ValueError(f"Unknown priority: {value}")
        return cls[value]

    @property
    def label(self) -> str:
        return self.name.lower()


class EquipmentStatus(str, enum.Enum):
    AVAILABLE = "available"
    CHECKED_OUT = "checked_out"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"

    @classmethod
    def from_string(cls, value: str) -> "EquipmentStatus":
        normalized = str(value).strip().lower().replace("-", "_")
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown equipment status: {value}")


class CheckoutStatus(str, enum.Enum):
    ACTIVE = "active"
    RETURNED = "returned"
    OVERDUE = "overdue"
    LOST = "lost"

    @classmethod
    def from_string(cls, value: str) -> "CheckoutStatus":
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown checkout status: {value}")


class NotificationType(str, enum.Enum):
    OVERDUE = "overdue"
    DUE_SOON = "due_soon"
    MAINTENANCE = "maintenance"
    SYSTEM = "system"


class RefreshMode(str, enum.Enum):
    SILENT = "silent"
    EXPLICIT = "explicit"


@dataclasses.dataclass(frozen=True)
class EquipmentSnapshot:
    """Point-in-time copy of an equipment record.

    `maintenance_since` is only known when the data service tracks
    maintenance entries; otherwise `created_at` stands in for it.
    """
    id: str
    status: EquipmentStatus
    total_quantity: int
    available_quantity: int
    created_at: datetime.datetime
    name: str = ""
    maintenance_since: Optional[datetime.datetime] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclasses.dataclass(frozen=True)
class CheckoutSnapshot:
    """Point-in-time copy of a loan record."""
    id: str
    equipment_id: str
    user_id: str
    checkout_date: datetime.datetime
    due_date: datetime.datetime
    status: CheckoutStatus
    return_date: Optional[datetime.datetime] = None

    @property
    def on_loan(self) -> bool:
        # A stored "overdue" status still means the units have not come back.
        return self.status in (CheckoutStatus.ACTIVE, CheckoutStatus.OVERDUE)


@dataclasses.dataclass(frozen=True)
class UserSnapshot:
    id: str
    first_name: str = ""
    last_name: str = ""
    department: Optional[str] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or "Unknown user"


@dataclasses.dataclass(frozen=True)
class AggregateCounters:
    """Dashboard counters produced by one derivation pass.

    Instances are replaced wholesale; consumers never see a
    partially updated set.
    """
    available_equipment: int
    checked_out_equipment: int
    overdue_equipment: int
    unread_notifications: int
    computed_at: Optional[datetime.datetime] = None

    def as_dict(self) -> dict:
        return {
            "available_equipment": self.available_equipment,
            "checked_out_equipment": self.checked_out_equipment,
            "overdue_equipment": self.overdue_equipment,
            "unread_notifications": self.unread_notifications,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
        }


@dataclasses.dataclass(frozen=True)
class NotificationContext:
    equipment_id: Optional[str] = None
    equipment_name: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    checkout_id: Optional[str] = None
    due_date: Optional[datetime.datetime] = None
    days_overdue: Optional[int] = None
    days_until_due: Optional[int] = None
    days_in_maintenance: Optional[int] = None

    def as_dict(self) -> dict:
        out = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, datetime.datetime):
                value = value.isoformat()
            out[f.name] = value
        return out


@dataclasses.dataclass(frozen=True)
class NotificationItem:
    """A derived, alert-style notification.

    The id is a deterministic function of the trigger type and
    the source record id, so the same condition maps to the same
    item across passes.
    """
    id: str
    type: NotificationType
    title: str
    message: str
    priority: Priority
    created_at: datetime.datetime
    read: bool = False
    context: Optional[NotificationContext] = None

    def sort_key(self):
        return (-int(self.priority), -self.created_at.timestamp(), self.id)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.label,
            "created_at": self.created_at.isoformat(),
            "read": self.read,
            "context": self.context.as_dict() if self.context else None,
        }


@dataclasses.dataclass
class ProviderConfig:
    """Connection settings for the REST snapshot provider."""
    url: str
    api_key_env: Optional[str] = None
    timeout: float = 10.0
    max_retries: int = 2
    equipment_table: str = "equipment"
    checkouts_table: str = "checkouts"
    users_table: str = "users"


@dataclasses.dataclass
class SchedulerConfig:
    interval_seconds: float = 30.0
    invalidation_delay_seconds: float = 0.5


@dataclasses.dataclass
class RulesConfig:
    """Day thresholds used by the notification rules."""
    due_soon_days: int = 3
    due_soon_high_days: int = 1
    overdue_medium_days: int = 3
    overdue_high_days: int = 7
    maintenance_stale_days: int = 30
    maintenance_high_days: int = 60


@dataclasses.dataclass
class AlertWebhookConfig:
    url: str
    method: str = "POST"
    headers: Dict[str, str] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class AlertMQTTConfig:
    host: str
    topic: str
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None


@dataclasses.dataclass
class AlertsConfig:
    min_priority: Priority = Priority.HIGH
    webhook: Optional[AlertWebhookConfig] = None
    mqtt: Optional[AlertMQTTConfig] = None

    @property
    def enabled(self) -> bool:
        return self.webhook is not None or self.mqtt is not None


@dataclasses.dataclass
class SnapshotSet:
    """Everything one pass reads from the provider."""
    equipment: List[EquipmentSnapshot]
    checkouts: List[CheckoutSnapshot]
    users: List[UserSnapshot] = dataclasses.field(default_factory=list)
