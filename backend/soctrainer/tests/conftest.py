"""Shared fixtures: a seeded session context on a controllable clock."""
from datetime import datetime, timedelta, timezone

import pytest

from soctrainer.models import EventKind, LogSource, NetworkContext, ProcessTreeNode, SimulatedEvent
from soctrainer.services.context import SessionClock, SessionContext

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeMonotonic:
    """Monotonic source the tests can move forward by hand."""

    def __init__(self, value: float = 1000.0):
        self.value = value

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float):
        self.value += seconds


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def ctx(monotonic):
    return SessionContext(
        session_id="session-test",
        seed=1234,
        clock=SessionClock(start=START, monotonic=monotonic),
    )


def make_event(event_id, stage=None, technique_id=None, dest_ip=None, domain=None, threat_score=80,
               minutes=0, process_id=None, hashes=None, details=None):
    """Hand-built record for extraction and scoring tests."""
    event_details = dict(details or {})
    if domain:
        event_details["QueryName"] = domain
    if hashes:
        event_details["Hashes"] = hashes
    return SimulatedEvent(
        id=event_id,
        session_id="session-test",
        source=LogSource.SYSMON,
        kind=EventKind.NETWORK_CONNECT if dest_ip else EventKind.DNS_QUERY,
        timestamp=START + timedelta(minutes=minutes),
        hostname="WIN-WS01",
        is_malicious=threat_score >= 60,
        threat_score=threat_score,
        technique_id=technique_id,
        stage=stage,
        network_context=NetworkContext(source_ip="10.0.1.5", dest_ip=dest_ip) if dest_ip else None,
        process_tree=ProcessTreeNode(process_id=process_id, process_name="evil.exe") if process_id else None,
        details=event_details,
    )
