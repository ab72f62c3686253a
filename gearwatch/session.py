from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from .engine import Clock, InventoryEngine
from .models import (
    AggregateCounters,
    AlertsConfig,
    RefreshMode,
    RulesConfig,
    SchedulerConfig,
)
from .provider import SnapshotProvider
from .scheduler import ErrorCallback, RefreshScheduler
from .state_store import NotificationFeed, NotificationStateStore, Predicate

logger = logging.getLogger(__name__)


class MonitorSession:
    """Everything a view needs, owned by one session.

    Wires an engine (counters and notification state) to a refresh
    scheduler and exposes the operations views call. Nothing here is
    global: two sessions never share read or dismiss state.
    """

    def __init__(
        self,
        provider: SnapshotProvider,
        *,
        clock: Optional[Clock] = None,
        rules: Optional[RulesConfig] = None,
        scheduler_config: Optional[SchedulerConfig] = None,
        alerts: Optional[AlertsConfig] = None,
        timer_factory=None,
        on_error: Optional[ErrorCallback] = None,
    ):
        scheduler_config = scheduler_config or SchedulerConfig()
        self.store = NotificationStateStore()
        self.engine = InventoryEngine(
            provider,
            store=self.store,
            clock=clock,
            rules=rules,
            alerts=alerts,
        )
        self.scheduler = RefreshScheduler(
            self.engine,
            interval=scheduler_config.interval_seconds,
            invalidation_delay=scheduler_config.invalidation_delay_seconds,
            timer_factory=timer_factory,
            on_error=on_error,
        )

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    def __enter__(self) -> "MonitorSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.stop()
        return False

    def get_aggregate_counters(self) -> Optional[AggregateCounters]:
        """Last computed counters, or None before the first successful pass."""
        return self.engine.get_aggregate_counters()

    def subscribe_to_notifications(
        self, spec: Union[None, str, Predicate] = None
    ) -> NotificationFeed:
        """Return a live feed; the first subscriber activates the scheduler."""
        feed = NotificationFeed(self.store, spec)
        if not self.scheduler.active:
            self.start()
        return feed

    def trigger_refresh(self, mode: Union[str, RefreshMode] = RefreshMode.EXPLICIT) -> Optional[AggregateCounters]:
        mode = RefreshMode(mode)
        if mode is RefreshMode.EXPLICIT:
            return self.scheduler.refresh()
        return self.scheduler.background_refresh()

    def notify_focus(self) -> Optional[AggregateCounters]:
        return self.scheduler.notify_focus()

    def notify_mutation(self, silent: bool = False) -> None:
        self.scheduler.invalidate(silent=silent)

    def mark_read(self, notification_id: str) -> bool:
        return self.engine.mark_read(notification_id)

    def mark_unread(self, notification_id: str) -> bool:
        return self.engine.mark_unread(notification_id)

    def mark_all_read(self) -> int:
        return self.engine.mark_all_read()

    def dismiss(self, notification_id: str) -> bool:
        return self.engine.dismiss(notification_id)

    def status(self) -> Dict[str, Any]:
        status = self.scheduler.status()
        status["notifications_available"] = self.store.available
        return status
