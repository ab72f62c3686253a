import datetime
import threading

import pytest

from gearwatch.models import (
    CheckoutSnapshot,
    CheckoutStatus,
    EquipmentSnapshot,
    EquipmentStatus,
)
from gearwatch.provider import StaticSnapshotProvider

NOW = datetime.datetime(2024, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)
DAY = datetime.timedelta(days=1)


class FakeTimer:
    """Stands in for threading.Timer; fires only when a test says so."""

    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled:
            self.fn()


class FakeTimers:
    def __init__(self):
        self.created = []

    def __call__(self, delay, fn):
        timer = FakeTimer(delay, fn)
        self.created.append(timer)
        return timer

    def pending(self, delay=None):
        return [
            t for t in self.created
            if t.started and not t.cancelled and (delay is None or t.delay == delay)
        ]


class GatedProvider(StaticSnapshotProvider):
    """Static provider whose fetch can be held open or made to fail."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = threading.Event()
        self.gate.set()
        self.entered = threading.Event()
        self.fail = None
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def fetch_snapshots(self):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.entered.set()
        try:
            if not self.gate.wait(5):
                raise RuntimeError("gate was never opened")
            if self.fail is not None:
                raise self.fail
            return super().fetch_snapshots()
        finally:
            with self._lock:
                self.active -= 1


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def drill(available=2):
    return EquipmentSnapshot(
        id="E1",
        name="Cordless drill",
        status=EquipmentStatus.AVAILABLE,
        total_quantity=5,
        available_quantity=available,
        created_at=NOW - 100 * DAY,
    )


def loan(cid="C1", due=NOW - DAY, status=CheckoutStatus.ACTIVE):
    return CheckoutSnapshot(
        id=cid,
        equipment_id="E1",
        user_id="U1",
        checkout_date=due - 14 * DAY,
        due_date=due,
        status=status,
    )


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def provider():
    return GatedProvider([drill()], [loan()])


@pytest.fixture
def clock():
    return FakeClock()
