"""Alert queue generation with SLA deadlines, plus the triage state machine."""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from soctrainer.errors import InvalidTransitionError
from soctrainer.models import (
    AffectedAsset,
    Alert,
    AlertQueueConfig,
    AlertStatus,
    Difficulty,
    Severity,
    SimulatedEvent,
)
from soctrainer.services.context import SessionContext

logger = logging.getLogger(__name__)

# Investigation window per severity, in minutes
SLA_WINDOWS_MINUTES: Dict[Severity, int] = {
    Severity.CRITICAL: 15,
    Severity.HIGH: 60,
    Severity.MEDIUM: 240,
    Severity.LOW: 1440,
    Severity.INFORMATIONAL: 4320,
}

TRUE_POSITIVE_SEVERITIES = [Severity.CRITICAL, Severity.HIGH, Severity.HIGH, Severity.MEDIUM]
FALSE_POSITIVE_SEVERITIES = [Severity.MEDIUM, Severity.LOW, Severity.LOW, Severity.INFORMATIONAL]

TRUE_POSITIVE_TEMPLATES: List[Dict[str, Any]] = [
    {
        "title": "Suspicious PowerShell Execution with Network Activity",
        "source": "EDR",
        "rule": "PowerShell with -EncodedCommand and Outbound Connection",
        "context": "PowerShell process with encoded command initiated outbound connection to known malicious IP",
        "priority": 85,
        "techniques": ["T1059.001"],
    },
    {
        "title": "Multiple Failed Login Attempts - Potential Brute Force",
        "source": "SIEM",
        "rule": "Failed Authentication Threshold Exceeded",
        "context": "15 failed login attempts for admin account within 5 minutes",
        "priority": 75,
        "techniques": ["T1078"],
    },
    {
        "title": "Lateral Movement Detected - SMB Connection to Multiple Hosts",
        "source": "EDR",
        "rule": "Unusual SMB Activity Pattern",
        "context": "Single host initiated SMB connections to 8 different systems in 10 minutes",
        "priority": 90,
        "techniques": ["T1021.002"],
    },
    {
        "title": "Potential Data Exfiltration - Large Outbound Transfer",
        "source": "Firewall",
        "rule": "Anomalous Outbound Traffic Volume",
        "context": "250MB transferred to external IP over HTTPS in single session",
        "priority": 80,
        "techniques": ["T1048"],
    },
    {
        "title": "Credential Dumping Tool Detected - Mimikatz",
        "source": "EDR",
        "rule": "Known Credential Access Tool Execution",
        "context": "Process matching Mimikatz signature executed with debug privileges",
        "priority": 95,
        "techniques": ["T1003"],
    },
]

FALSE_POSITIVE_TEMPLATES: List[Dict[str, Any]] = [
    {
        "title": "Outbound Connection to Suspicious Domain",
        "source": "Proxy",
        "rule": "Connection to Recently Registered Domain",
        "context": "User accessed newly registered domain - likely legitimate CDN",
        "priority": 40,
    },
    {
        "title": "Unusual Process Execution",
        "source": "EDR",
        "rule": "Rare Process Baseline Deviation",
        "context": "Process rarely seen on network - appears to be legitimate software update",
        "priority": 35,
    },
    {
        "title": "Port Scan Detected from Internal Host",
        "source": "IDS",
        "rule": "Multiple Port Connection Attempts",
        "context": "Likely automated vulnerability scanner from security team",
        "priority": 30,
    },
]

# Default (tp, fp, total) queue mix per scenario difficulty
DEFAULT_QUEUE_MIX: Dict[Difficulty, AlertQueueConfig] = {
    Difficulty.BEGINNER: AlertQueueConfig(true_positive_count=3, false_positive_count=1, total_count=5),
    Difficulty.INTERMEDIATE: AlertQueueConfig(true_positive_count=4, false_positive_count=2, total_count=8),
    Difficulty.ADVANCED: AlertQueueConfig(true_positive_count=5, false_positive_count=4, total_count=12),
}

# Allowed triage moves; Closed and False Positive are terminal
TRIAGE_TRANSITIONS: Dict[AlertStatus, set] = {
    AlertStatus.NEW: {AlertStatus.INVESTIGATING},
    AlertStatus.INVESTIGATING: {AlertStatus.ESCALATED, AlertStatus.CLOSED, AlertStatus.FALSE_POSITIVE},
    AlertStatus.ESCALATED: {AlertStatus.CLOSED, AlertStatus.FALSE_POSITIVE},
    AlertStatus.CLOSED: set(),
    AlertStatus.FALSE_POSITIVE: set(),
}

TERMINAL_STATUSES = {AlertStatus.CLOSED, AlertStatus.FALSE_POSITIVE}


def sla_window_seconds(severity: Severity) -> int:
    return SLA_WINDOWS_MINUTES[Severity(severity)] * 60


class AlertGenerator:
    """Builds the SOC alert queue for one session.

    Ticket numbers come from the session context, so they are unique and
    increasing within the session only.
    """

    def __init__(self, ctx: SessionContext):
        self.ctx = ctx

    def generate_alert_queue(
        self,
        config: AlertQueueConfig,
        events: Optional[Sequence[SimulatedEvent]] = None,
    ) -> List[Alert]:
        """Emit exactly ``config.total_count`` alerts, Critical/High first."""
        alerts: List[Alert] = []
        for _ in range(config.true_positive_count):
            alerts.append(self._true_positive(events or ()))
        for _ in range(config.false_positive_count):
            alerts.append(self._false_positive())
        for _ in range(config.benign_count):
            alerts.append(self._benign())

        queue = self._prioritize(alerts)
        logger.info(
            f"[ALERTS] Generated {len(queue)} alerts "
            f"(tp={config.true_positive_count}, fp={config.false_positive_count}, benign={config.benign_count})"
        )
        return queue

    def _new_alert(self, severity: Severity, **fields) -> Alert:
        created_at = self.ctx.clock.now()
        window = sla_window_seconds(severity)
        return Alert(
            id=self.ctx.new_id("alert"),
            ticket_number=self.ctx.next_ticket_number(),
            session_id=self.ctx.session_id,
            severity=severity,
            sla_deadline=created_at + timedelta(seconds=window),
            sla_window_seconds=window,
            sla_remaining_seconds=window,
            created_at=created_at,
            **fields,
        )

    def _workstation(self, user: bool = True) -> AffectedAsset:
        rng = self.ctx.rng
        return AffectedAsset(
            hostname=f"WORKSTATION-{rng.randint(0, 99)}",
            ip=f"10.50.12.{rng.randint(1, 254)}",
            user=f"user{rng.randint(0, 49)}" if user else None,
        )

    def _true_positive(self, events: Sequence[SimulatedEvent]) -> Alert:
        severity = self.ctx.rng.choice(TRUE_POSITIVE_SEVERITIES)
        template = self.ctx.rng.choice(TRUE_POSITIVE_TEMPLATES)
        related = [
            e for e in events
            if e.is_malicious and e.technique_id in template["techniques"]
        ]
        if related:
            first = related[0]
            asset = AffectedAsset(
                hostname=first.hostname,
                ip=first.network_context.source_ip if first.network_context and first.network_context.source_ip else f"10.50.12.{self.ctx.rng.randint(1, 254)}",
                user=first.process_tree.user if first.process_tree else None,
            )
        else:
            asset = self._workstation()
        return self._new_alert(
            severity,
            title=template["title"],
            alert_source=template["source"],
            detection_rule=template["rule"],
            affected_assets=[asset],
            mitre_techniques=list(template["techniques"]),
            priority_score=template["priority"],
            containment_required=severity in (Severity.CRITICAL, Severity.HIGH),
            initial_context=template["context"],
            related_event_ids=[e.id for e in related],
            is_true_positive=True,
        )

    def _false_positive(self) -> Alert:
        severity = self.ctx.rng.choice(FALSE_POSITIVE_SEVERITIES)
        template = self.ctx.rng.choice(FALSE_POSITIVE_TEMPLATES)
        return self._new_alert(
            severity,
            title=template["title"],
            alert_source=template["source"],
            detection_rule=template["rule"],
            affected_assets=[self._workstation(user=False)],
            priority_score=template["priority"],
            initial_context=template["context"],
            is_true_positive=False,
        )

    def _benign(self) -> Alert:
        rng = self.ctx.rng
        return self._new_alert(
            Severity.INFORMATIONAL,
            title="Scheduled Task Execution",
            alert_source="SIEM",
            detection_rule="Scheduled Task Activity",
            affected_assets=[AffectedAsset(
                hostname=f"SERVER-{rng.randint(0, 19)}",
                ip=f"10.50.1.{rng.randint(1, 254)}",
            )],
            priority_score=10,
            initial_context="Routine scheduled task executed successfully",
            is_true_positive=False,
        )

    def _prioritize(self, alerts: List[Alert]) -> List[Alert]:
        """Stable partial sort: Critical band, then High, then the rest, each shuffled."""
        critical = [a for a in alerts if a.severity == Severity.CRITICAL]
        high = [a for a in alerts if a.severity == Severity.HIGH]
        rest = [a for a in alerts if a.severity not in (Severity.CRITICAL, Severity.HIGH)]
        for band in (critical, high, rest):
            self.ctx.rng.shuffle(band)
        return critical + high + rest


def default_queue_config(difficulty: Difficulty) -> AlertQueueConfig:
    return DEFAULT_QUEUE_MIX[Difficulty(difficulty)]


def apply_triage_action(alert: Alert, status: AlertStatus, now: datetime) -> Alert:
    """Move an alert along the triage state machine.

    Raises InvalidTransitionError for any edge not in TRIAGE_TRANSITIONS.
    """
    status = AlertStatus(status)
    if status not in TRIAGE_TRANSITIONS[alert.status]:
        raise InvalidTransitionError(alert.status.value, status.value)

    if alert.triaged_at is None:
        alert.triaged_at = now
        alert.time_to_triage_seconds = max(0.0, (now - alert.created_at).total_seconds())
    if status in TERMINAL_STATUSES:
        alert.closed_at = now
    alert.status = status
    logger.info(f"[ALERTS] {alert.ticket_number} -> {status.value}")
    return alert
