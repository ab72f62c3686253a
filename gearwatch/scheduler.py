from __future__ import annotations

import datetime
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .engine import InventoryEngine
from .errors import DerivationInternalError, GearwatchError
from .models import AggregateCounters

TRIGGER_ACTIVATION = "activation"
TRIGGER_INTERVAL = "interval"
TRIGGER_FOCUS = "focus"
TRIGGER_EXPLICIT = "explicit"
TRIGGER_MUTATION = "mutation"
TRIGGER_SILENT = "silent"

STATE_IDLE = "idle"
STATE_REFRESHING = "refreshing"

DEFAULT_INTERVAL_SECONDS = 30.0
DEFAULT_INVALIDATION_DELAY_SECONDS = 0.5

ErrorCallback = Callable[[BaseException, str], None]


def daemon_timer(delay: float, fn: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    return timer


class RefreshScheduler:
    """Decides when the engine runs a pass.

    Triggers: activation (`start`), a fixed interval, refocus
    (`notify_focus`), explicit user action (`refresh`) and debounced
    post-mutation invalidation (`invalidate`). At most one pass runs at a
    time: silent triggers that arrive while a pass is in flight are dropped,
    explicit ones wait for it to finish and then run. This holds across
    `stop`/`start`: a restart waits for a pass left over from before it.
    An explicit refresh also runs when the scheduler is not active, without
    arming any timers.

    `stop` releases all timers. A pass already in flight finishes, but its
    result is thrown away instead of being applied.
    """

    def __init__(
        self,
        engine: InventoryEngine,
        *,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        invalidation_delay: float = DEFAULT_INVALIDATION_DELAY_SECONDS,
        timer_factory: Optional[Callable[[float, Callable[[], None]], Any]] = None,
        on_error: Optional[ErrorCallback] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive (got {interval})")
        if invalidation_delay < 0:
            raise ValueError(f"invalidation_delay must be non-negative (got {invalidation_delay})")
        self._engine = engine
        self.interval = float(interval)
        self.invalidation_delay = float(invalidation_delay)
        self._timer_factory = timer_factory or daemon_timer
        self._on_error = on_error
        self._logger = logger or logging.getLogger(__name__)

        self._cond = threading.Condition()
        self._active = False
        self._generation = 0
        self._in_flight = False
        self._interval_timer: Any = None
        self._invalidation_timer: Any = None
        self._invalidation_seq = 0
        self._invalidation_silent = True

        self.state = STATE_IDLE
        self.last_error: Optional[BaseException] = None
        self.last_trigger: Optional[str] = None
        self.last_success_at: Optional[datetime.datetime] = None
        self.passes_completed = 0
        self.passes_dropped = 0
        self.passes_discarded = 0

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> Optional[AggregateCounters]:
        """Activate the scheduler and run the activation pass (silent)."""
        with self._cond:
            if self._active:
                return None
            self._active = True
            self._generation += 1
            generation = self._generation
        self._logger.info(f"Refresh scheduler started (interval {self.interval:g}s)")
        self._arm_interval(generation)
        return self._run(TRIGGER_ACTIVATION, silent=True, wait=True)

    def stop(self) -> None:
        timers: List[Any] = []
        with self._cond:
            if not self._active:
                return
            self._active = False
            self._generation += 1
            timers = [self._interval_timer, self._invalidation_timer]
            self._interval_timer = None
            self._invalidation_timer = None
            self._cond.notify_all()
        for timer in timers:
            if timer is not None:
                timer.cancel()
        self._logger.info("Refresh scheduler stopped")

    def _arm_interval(self, generation: int) -> None:
        timer = self._timer_factory(self.interval, lambda: self._on_interval(generation))
        with self._cond:
            if not self._active or generation != self._generation:
                return
            self._interval_timer = timer
        timer.start()

    def _on_interval(self, generation: int) -> None:
        with self._cond:
            if not self._active or generation != self._generation:
                return
        try:
            self._run(TRIGGER_INTERVAL, silent=True, wait=False)
        finally:
            self._arm_interval(generation)

    def notify_focus(self) -> Optional[AggregateCounters]:
        """The view regained foreground attention."""
        return self._run(TRIGGER_FOCUS, silent=True, wait=False)

    def background_refresh(self) -> Optional[AggregateCounters]:
        """Silent refresh requested by a caller; dropped if a pass is running."""
        return self._run(TRIGGER_SILENT, silent=True, wait=False)

    def refresh(self) -> Optional[AggregateCounters]:
        """User-initiated refresh; failures are raised to the caller.

        Runs one pass even when the scheduler is not active.
        """
        return self._run(TRIGGER_EXPLICIT, silent=False, wait=True, require_active=False)

    def invalidate(self, silent: bool = False) -> None:
        """Schedule a refresh after a local mutation.

        The pass runs `invalidation_delay` seconds later so the external write
        is visible to the next read. Invalidations inside that delay collapse
        into one pass, which is silent only if every one of them was.
        """
        with self._cond:
            if not self._active:
                return
            generation = self._generation
            previous = self._invalidation_timer
            self._invalidation_silent = silent and (previous is None or self._invalidation_silent)
            self._invalidation_seq += 1
            seq = self._invalidation_seq
            timer = self._timer_factory(
                self.invalidation_delay, lambda: self._on_invalidation(generation, seq)
            )
            self._invalidation_timer = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _on_invalidation(self, generation: int, seq: int) -> None:
        with self._cond:
            if not self._active or generation != self._generation or seq != self._invalidation_seq:
                return
            silent = self._invalidation_silent
            self._invalidation_timer = None
            self._invalidation_silent = True
        self._run(TRIGGER_MUTATION, silent=silent, wait=not silent)

    def _run(
        self, trigger: str, silent: bool, wait: bool, require_active: bool = True
    ) -> Optional[AggregateCounters]:
        with self._cond:
            if require_active and not self._active:
                self._logger.debug(f"Ignoring {trigger} refresh: scheduler is not active")
                return None
            if self._in_flight:
                if not wait:
                    self.passes_dropped += 1
                    self._logger.debug(f"Dropping {trigger} refresh: a pass is already running")
                    return None
                self._cond.wait_for(
                    lambda: not self._in_flight or (require_active and not self._active)
                )
                if require_active and not self._active:
                    return None
            generation = self._generation
            self._in_flight = True
            self.state = STATE_REFRESHING
            self.last_trigger = trigger

        counters: Optional[AggregateCounters] = None
        error: Optional[BaseException] = None
        try:
            result = self._engine.compute_pass()
            with self._cond:
                stale = generation != self._generation
            if stale:
                self.passes_discarded += 1
                self._logger.info(f"Discarding {trigger} refresh result: scheduler was restarted or stopped")
            else:
                counters = self._engine.apply_pass(result)
                if result.derivation_error is not None:
                    error = result.derivation_error
        except Exception as e:
            error = e
        finally:
            with self._cond:
                self._in_flight = False
                self.state = STATE_IDLE
                if generation == self._generation:
                    self.last_error = error
                    if error is None and counters is not None:
                        self.last_success_at = counters.computed_at
                self.passes_completed += 1
                self._cond.notify_all()

        if error is not None:
            self._handle_error(trigger, silent, error)
        return counters

    def _handle_error(self, trigger: str, silent: bool, error: BaseException) -> None:
        internal = isinstance(error, DerivationInternalError) or not isinstance(error, GearwatchError)
        if silent and not internal:
            self._logger.warning(f"Background {trigger} refresh failed: {error}")
            return

        self._logger.error(f"{trigger.capitalize()} refresh failed: {error}")
        if trigger == TRIGGER_EXPLICIT:
            raise error
        if self._on_error is not None:
            try:
                self._on_error(error, trigger)
            except Exception as e:
                self._logger.error(f"Refresh error callback failed: {e}")

    def status(self) -> Dict[str, Any]:
        with self._cond:
            return {
                "active": self._active,
                "state": self.state,
                "last_trigger": self.last_trigger,
                "last_error": str(self.last_error) if self.last_error else None,
                "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
                "passes_completed": self.passes_completed,
                "passes_dropped": self.passes_dropped,
                "passes_discarded": self.passes_discarded,
                "interval_seconds": self.interval,
            }
