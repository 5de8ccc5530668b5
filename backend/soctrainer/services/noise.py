"""Benign background activity that hides the attack among normal traffic."""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from soctrainer.models import EventKind, NoiseLevel, SimulatedEvent
from soctrainer.services.context import SessionContext
from soctrainer.services.log_builders import build_event

logger = logging.getLogger(__name__)

NOISE_EVENT_COUNTS = {
    NoiseLevel.LOW: 25,
    NoiseLevel.MEDIUM: 50,
    NoiseLevel.HIGH: 100,
}

# Cumulative thresholds for the kind of each background record
_KIND_MIX = [
    (0.30, EventKind.PROCESS_CREATE),
    (0.55, EventKind.HTTP_REQUEST),
    (0.70, EventKind.FILE_CREATE),
    (0.85, EventKind.NETWORK_CONNECT),
    (1.00, EventKind.DNS_QUERY),
]

NOISE_PROCESSES = [
    ("C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe", "chrome.exe --type=renderer"),
    ("C:\\Program Files\\Microsoft Office\\root\\Office16\\OUTLOOK.EXE", "outlook.exe /recycle"),
    ("C:\\Users\\user\\AppData\\Local\\Microsoft\\Teams\\current\\Teams.exe", "teams.exe --type=gpu-process"),
    ("C:\\Program Files\\Microsoft Office\\root\\Office16\\EXCEL.EXE", "EXCEL.EXE /automation"),
    ("C:\\Windows\\System32\\notepad.exe", "notepad.exe"),
    ("C:\\Windows\\System32\\svchost.exe", "svchost.exe -k NetworkService"),
    ("C:\\Windows\\System32\\wuauclt.exe", "wuauclt.exe /detectnow"),
    ("C:\\ProgramData\\Microsoft\\Windows Defender\\Platform\\MsMpEng.exe", "MsMpEng.exe"),
]


def generate_background_noise(
    level: NoiseLevel,
    window_start: datetime,
    window_end: datetime,
    ctx: SessionContext,
    hosts: Optional[Sequence[str]] = None,
    scenario_id: Optional[str] = None,
) -> List[SimulatedEvent]:
    """Generate benign records spread evenly, with jitter, across the window."""
    count = NOISE_EVENT_COUNTS[NoiseLevel(level)]
    hosts = list(hosts or ["WIN-WS01"])
    span = max((window_end - window_start).total_seconds(), 1.0)
    step = span / count

    events: List[SimulatedEvent] = []
    for i in range(count):
        roll = ctx.rng.random()
        kind = next(k for threshold, k in _KIND_MIX if roll < threshold)
        context = {
            "hostname": ctx.rng.choice(hosts),
            "username": f"CORP\\user{ctx.rng.randint(1, 20)}",
            "timestamp": window_start + timedelta(seconds=step * i + ctx.rng.random() * step * 0.5),
            "scenario_id": scenario_id,
        }
        if kind == EventKind.PROCESS_CREATE:
            context["image"], context["command_line"] = ctx.rng.choice(NOISE_PROCESSES)
            context["parent_process"] = "explorer.exe"
        events.append(build_event(kind, False, context, ctx))

    logger.debug(f"[NOISE] Generated {len(events)} background records ({NoiseLevel(level).value})")
    return events
