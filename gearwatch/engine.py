import dataclasses
import datetime
import logging
import threading
from typing import Callable, List, Optional

from .aggregation import compute_counters
from .alerts import send_alerts
from .derivation import derive_notifications, unavailable_item
from .errors import DerivationInternalError, GearwatchError, SnapshotFetchFailure
from .models import (
    AggregateCounters,
    AlertsConfig,
    NotificationItem,
    RulesConfig,
    SnapshotSet,
)
from .provider import SnapshotProvider
from .state_store import NotificationStateStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclasses.dataclass
class PassResult:
    """Output of one derivation pass, not yet applied to session state."""
    now: datetime.datetime
    snapshots: SnapshotSet
    counters: AggregateCounters
    candidates: Optional[List[NotificationItem]]
    derivation_error: Optional[DerivationInternalError] = None


class InventoryEngine:
    """Runs derivation passes and owns their results for one session.

    A pass is split in two: `compute_pass` talks to the provider and does
    all the math without touching session state, `apply_pass` swaps the
    results in. The scheduler uses the split to drop results that arrive
    after teardown.
    """

    def __init__(
        self,
        provider: SnapshotProvider,
        store: Optional[NotificationStateStore] = None,
        clock: Optional[Clock] = None,
        rules: Optional[RulesConfig] = None,
        alerts: Optional[AlertsConfig] = None,
    ):
        self.provider = provider
        self.store = store or NotificationStateStore()
        self.clock = clock or utc_now
        self.rules = rules or RulesConfig()
        self.alerts = alerts
        self._lock = threading.RLock()
        self._counters: Optional[AggregateCounters] = None

    def _fetch(self) -> SnapshotSet:
        try:
            return self.provider.fetch_snapshots()
        except GearwatchError:
            raise
        except Exception as e:
            raise SnapshotFetchFailure(f"snapshot provider failed: {e}") from e

    def compute_pass(self) -> PassResult:
        """Fetch snapshots and derive counters and notification candidates.

        Raises:
            SnapshotFetchFailure: the provider could not be read
            MalformedSnapshot: the provider returned unusable data
        """
        now = self.clock()
        snapshots = self._fetch()
        counters = compute_counters(snapshots.equipment, snapshots.checkouts, now)

        candidates = None
        error = None
        try:
            candidates = derive_notifications(
                snapshots.equipment,
                snapshots.checkouts,
                now,
                users=snapshots.users or [],
                rules=self.rules,
            )
        except DerivationInternalError as e:
            logger.error(f"Notification derivation failed: {e}")
            error = e

        return PassResult(
            now=now,
            snapshots=snapshots,
            counters=counters,
            candidates=candidates,
            derivation_error=error,
        )

    def apply_pass(self, result: PassResult) -> AggregateCounters:
        """Reconcile candidates into the store and publish the new counters."""
        inserted: List[NotificationItem] = []
        with self._lock:
            if result.candidates is None:
                reason = str(result.derivation_error or "unknown error")
                self.store.set_unavailable(unavailable_item(result.now, reason))
            else:
                inserted = self.store.reconcile(result.candidates)
            counters = dataclasses.replace(
                result.counters, unread_notifications=self.store.unread_count()
            )
            self._counters = counters

        if inserted and self.alerts is not None and self.alerts.enabled:
            send_alerts(self.alerts, inserted)

        logger.info(
            f"Refreshed: {counters.available_equipment} available, "
            f"{counters.checked_out_equipment} checked out, "
            f"{counters.overdue_equipment} overdue, "
            f"{counters.unread_notifications} unread"
        )
        return counters

    def run_pass(self) -> AggregateCounters:
        """Compute and apply a pass in one go.

        A DerivationInternalError is raised after the pass has been applied,
        so counters are current and the feed shows the unavailable placeholder.
        """
        result = self.compute_pass()
        counters = self.apply_pass(result)
        if result.derivation_error is not None:
            raise result.derivation_error
        return counters

    def get_aggregate_counters(self) -> Optional[AggregateCounters]:
        return self._counters

    def _refresh_unread(self) -> None:
        with self._lock:
            if self._counters is not None:
                self._counters = dataclasses.replace(
                    self._counters, unread_notifications=self.store.unread_count()
                )

    def mark_read(self, notification_id: str) -> bool:
        changed = self.store.mark_read(notification_id)
        self._refresh_unread()
        return changed

    def mark_unread(self, notification_id: str) -> bool:
        changed = self.store.mark_unread(notification_id)
        self._refresh_unread()
        return changed

    def mark_all_read(self) -> int:
        changed = self.store.mark_all_read()
        self._refresh_unread()
        return changed

    def dismiss(self, notification_id: str) -> bool:
        changed = self.store.dismiss(notification_id)
        self._refresh_unread()
        return changed
