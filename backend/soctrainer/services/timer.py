"""SLA timer service - polls alert deadlines and advances SLA status."""
import asyncio
import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from soctrainer.models import Alert, InvestigationSession, SLAStatus
from soctrainer.services.alerts import TERMINAL_STATUSES
from soctrainer.services.context import SessionClock
from soctrainer.settings import settings

logger = logging.getLogger(__name__)

_STATUS_RANK = {
    SLAStatus.ON_TIME: 0,
    SLAStatus.WARNING: 1,
    SLAStatus.BREACHED: 2,
}

# Running timers, one per session
_timers: Dict[str, "SLATimer"] = {}


def compute_sla_status(remaining_seconds: float, window_seconds: float, warning_ratio: Optional[float] = None) -> SLAStatus:
    """Status implied by the remaining time alone (no monotonic guard)."""
    ratio = settings.SLA_WARNING_RATIO if warning_ratio is None else warning_ratio
    if remaining_seconds < 0:
        return SLAStatus.BREACHED
    if remaining_seconds < window_seconds * ratio:
        return SLAStatus.WARNING
    return SLAStatus.ON_TIME


def update_alert_sla(alert: Alert, now: datetime, warning_ratio: Optional[float] = None) -> bool:
    """Recompute one alert's SLA fields. Returns True if its status advanced.

    Alerts already Closed or marked False Positive are frozen, and a status
    never moves back towards OnTime. Remaining seconds are floored and only
    ever decrease, so a clock read that lands earlier changes nothing.
    """
    if alert.status in TERMINAL_STATUSES:
        return False
    remaining = (alert.sla_deadline - now).total_seconds()
    floored = math.floor(remaining)
    if floored < alert.sla_remaining_seconds:
        alert.sla_remaining_seconds = floored
    computed = compute_sla_status(remaining, alert.sla_window_seconds, warning_ratio)
    if _STATUS_RANK[computed] > _STATUS_RANK[alert.sla_status]:
        alert.sla_status = computed
        return True
    return False


def tick_alerts(alerts: Iterable[Alert], now: datetime) -> List[Alert]:
    """Run one SLA tick over a queue; returns the alerts whose status changed."""
    return [alert for alert in alerts if update_alert_sla(alert, now)]


def count_sla_breaches(alerts: Iterable[Alert]) -> int:
    return sum(1 for alert in alerts if alert.sla_status == SLAStatus.BREACHED)


class SLATimer:
    """Cancellable background task ticking one session's alert queue."""

    def __init__(self, session: InvestigationSession, clock: SessionClock, interval: Optional[float] = None):
        self.session = session
        self.clock = clock
        self.interval = interval if interval is not None else settings.SLA_TICK_SECONDS
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> List[Alert]:
        changed = tick_alerts(self.session.alerts, self.clock.now())
        for alert in changed:
            logger.info(f"[SLA] {alert.ticket_number} is now {alert.sla_status.value} ({alert.sla_remaining_seconds}s left)")
        return changed

    async def _run(self):
        while True:
            try:
                await asyncio.sleep(self.interval)
                self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[SLA] Error in timer loop for {self.session.session_id}: {e}")

    def start(self):
        if not self.running:
            logger.info(f"[SLA] Starting SLA timer for session {self.session.session_id}")
            self._task = asyncio.create_task(self._run())

    def stop(self):
        if self.running:
            logger.info(f"[SLA] Stopping SLA timer for session {self.session.session_id}")
            self._task.cancel()
        self._task = None


def start_sla_timer(session: InvestigationSession, clock: SessionClock) -> Optional[SLATimer]:
    """Start (or return the running) timer for a session. Needs a running event loop."""
    if not settings.FEATURE_SLA_TIMER:
        return None
    timer = _timers.get(session.session_id)
    if timer is None:
        timer = SLATimer(session, clock)
        _timers[session.session_id] = timer
    timer.start()
    return timer


def stop_sla_timer(session_id: str):
    timer = _timers.pop(session_id, None)
    if timer:
        timer.stop()


def stop_all_timers():
    for session_id in list(_timers):
        stop_sla_timer(session_id)
