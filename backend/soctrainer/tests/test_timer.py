"""Tests for SLA status tracking and the background timer."""
import asyncio
from datetime import timedelta

from soctrainer.models import AlertQueueConfig, AlertStatus, SLAStatus, Severity
from soctrainer.services.alerts import AlertGenerator, apply_triage_action
from soctrainer.services.timer import (
    SLATimer,
    compute_sla_status,
    count_sla_breaches,
    tick_alerts,
    update_alert_sla,
)
from conftest import START


def _alert(ctx):
    config = AlertQueueConfig(true_positive_count=1, false_positive_count=0, total_count=1)
    return AlertGenerator(ctx).generate_alert_queue(config)[0]


def test_compute_sla_status():
    """Test thresholds at 20% remaining and at the deadline."""
    assert compute_sla_status(1000, 3600) == SLAStatus.ON_TIME
    assert compute_sla_status(700, 3600) == SLAStatus.WARNING
    assert compute_sla_status(0, 3600) == SLAStatus.WARNING
    assert compute_sla_status(-1, 3600) == SLAStatus.BREACHED


def test_alert_progresses_to_breached(ctx):
    """Test an untouched alert warns, then breaches."""
    alert = _alert(ctx)
    window = alert.sla_window_seconds

    assert update_alert_sla(alert, START + timedelta(seconds=window * 0.5)) is False
    assert update_alert_sla(alert, START + timedelta(seconds=window * 0.9)) is True
    assert alert.sla_status == SLAStatus.WARNING
    assert update_alert_sla(alert, START + timedelta(seconds=window + 1)) is True
    assert alert.sla_status == SLAStatus.BREACHED
    assert alert.sla_remaining_seconds < 0


def test_status_never_moves_back(ctx):
    """Test a breached alert stays breached even if time reads earlier."""
    alert = _alert(ctx)
    update_alert_sla(alert, START + timedelta(days=10))
    breached_remaining = alert.sla_remaining_seconds

    update_alert_sla(alert, START)
    assert alert.sla_status == SLAStatus.BREACHED
    assert alert.sla_remaining_seconds == breached_remaining
    assert alert.sla_remaining_seconds < 0


def test_remaining_seconds_floor_past_deadline(ctx):
    """Test half a second past the deadline reads as -1 and breached."""
    alert = _alert(ctx)
    deadline = alert.sla_deadline

    update_alert_sla(alert, deadline - timedelta(seconds=0.5))
    assert alert.sla_remaining_seconds == 0
    assert alert.sla_status == SLAStatus.WARNING

    update_alert_sla(alert, deadline + timedelta(seconds=0.5))
    assert alert.sla_remaining_seconds == -1
    assert alert.sla_status == SLAStatus.BREACHED


def test_closed_alerts_are_frozen(ctx):
    """Test closing an alert stops its SLA clock."""
    alert = _alert(ctx)
    apply_triage_action(alert, AlertStatus.INVESTIGATING, START)
    apply_triage_action(alert, AlertStatus.CLOSED, START)

    assert update_alert_sla(alert, START + timedelta(days=10)) is False
    assert alert.sla_status == SLAStatus.ON_TIME


def test_tick_reports_changes_and_counts_breaches(ctx):
    """Test a tick returns changed alerts and breaches are counted."""
    config = AlertQueueConfig(true_positive_count=3, false_positive_count=2, total_count=5)
    alerts = AlertGenerator(ctx).generate_alert_queue(config)

    critical_deadline = min(a.sla_deadline for a in alerts)
    changed = tick_alerts(alerts, critical_deadline + timedelta(seconds=1))

    assert changed
    assert count_sla_breaches(alerts) >= 1
    assert count_sla_breaches(alerts) == sum(1 for a in alerts if a.sla_status == SLAStatus.BREACHED)


def test_informational_window_is_three_days(ctx):
    """Test benign alerts get the longest window."""
    config = AlertQueueConfig(true_positive_count=0, false_positive_count=0, total_count=1)
    alert = AlertGenerator(ctx).generate_alert_queue(config)[0]

    assert alert.severity == Severity.INFORMATIONAL
    assert alert.sla_window_seconds == 3 * 24 * 3600


def test_background_timer_breaches_alerts(ctx, monotonic):
    """Test the running timer advances SLA status on its own."""
    from soctrainer.services.simulation import generate_scenario
    from soctrainer.models import ScenarioConfig

    session = generate_scenario(ScenarioConfig(story_type="credential-harvesting", noise_level="low"), ctx)
    monotonic.advance(10 * 24 * 3600)

    async def run():
        timer = SLATimer(session, ctx.clock, interval=0.01)
        timer.start()
        assert timer.running
        await asyncio.sleep(0.1)
        timer.stop()
        assert not timer.running

    asyncio.run(run())
    assert count_sla_breaches(session.alerts) == len(session.alerts)
