"""Pydantic models for the SOC trainer engine."""
from typing import Optional, Literal, List, Dict, Any, Tuple
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator
from enum import Enum


class AttackStage(str, Enum):
    RECONNAISSANCE = "reconnaissance"
    RESOURCE_DEVELOPMENT = "resource-development"
    INITIAL_ACCESS = "initial-access"
    EXECUTION = "execution"
    PERSISTENCE = "persistence"
    PRIVILEGE_ESCALATION = "privilege-escalation"
    DEFENSE_EVASION = "defense-evasion"
    CREDENTIAL_ACCESS = "credential-access"
    DISCOVERY = "discovery"
    LATERAL_MOVEMENT = "lateral-movement"
    COLLECTION = "collection"
    COMMAND_AND_CONTROL = "command-and-control"
    EXFILTRATION = "exfiltration"
    IMPACT = "impact"


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class NoiseLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Severity(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    INFORMATIONAL = "Informational"


class AlertStatus(str, Enum):
    NEW = "New"
    INVESTIGATING = "Investigating"
    ESCALATED = "Escalated"
    CLOSED = "Closed"
    FALSE_POSITIVE = "False Positive"


class SLAStatus(str, Enum):
    ON_TIME = "OnTime"
    WARNING = "Warning"
    BREACHED = "Breached"


class LogSource(str, Enum):
    SYSMON = "sysmon"
    ZEEK = "zeek"


class EventKind(str, Enum):
    PROCESS_CREATE = "process_create"
    NETWORK_CONNECT = "network_connect"
    DNS_QUERY = "dns_query"
    FILE_CREATE = "file_create"
    HTTP_REQUEST = "http_request"


class IOCType(str, Enum):
    IP = "ip"
    DOMAIN = "domain"
    HASH = "hash"
    PID = "pid"


class IOCTag(str, Enum):
    CONFIRMED_THREAT = "confirmed-threat"
    SUSPICIOUS = "suspicious"
    BENIGN = "benign"


class IOCClass(str, Enum):
    MALICIOUS = "malicious"
    BENIGN = "benign"


class ScoringMode(str, Enum):
    WEIGHTED = "weighted"
    ALERT_CENTRIC = "alert_centric"


# ============================================================================
# Scenario / Attack Chain Models
# ============================================================================

class Artifact(BaseModel):
    type: Literal["ip", "domain", "hash", "process", "user", "file", "command"]
    value: str


class AttackChainStage(BaseModel):
    stage: AttackStage
    technique_id: str
    technique_name: str
    timestamp: datetime
    description: str
    success: bool = True
    artifacts: List[Artifact] = Field(default_factory=list)
    events: List[str] = Field(default_factory=list)  # SimulatedEvent ids


class AttackChain(BaseModel):
    id: str
    scenario_id: str
    session_id: str
    name: str
    description: str
    stages: List[AttackChainStage] = Field(default_factory=list)
    status: Literal["active", "completed"] = "active"
    start_time: datetime


class TimelineEvent(BaseModel):
    timestamp: datetime
    stage: AttackStage
    description: str
    visible_to_user: bool
    detection_triggered: bool  # UI only, never read by scoring


class Narrative(BaseModel):
    background: str
    incident: str
    your_role: str


class ScenarioStory(BaseModel):
    id: str
    story_type: str
    name: str
    description: str
    initial_infection_vector: str
    attack_chain: AttackChain
    timeline: List[TimelineEvent] = Field(default_factory=list)
    learning_objectives: List[str] = Field(default_factory=list)
    difficulty: Difficulty
    narrative: Narrative

    def trainee_view(self) -> Dict[str, Any]:
        """Story as shown to the trainee: only visible timeline entries, no chain internals."""
        data = self.model_dump(mode="json", exclude={"attack_chain", "timeline"})
        data["timeline"] = [
            entry.model_dump(mode="json", exclude={"detection_triggered"})
            for entry in self.timeline
            if entry.visible_to_user
        ]
        return data


class AlertQueueConfig(BaseModel):
    true_positive_count: int = Field(ge=0)
    false_positive_count: int = Field(ge=0)
    total_count: int = Field(ge=0)

    @model_validator(mode="after")
    def check_total(self) -> "AlertQueueConfig":
        if self.total_count < self.true_positive_count + self.false_positive_count:
            raise ValueError("total_count must be >= true_positive_count + false_positive_count")
        return self

    @property
    def benign_count(self) -> int:
        return self.total_count - self.true_positive_count - self.false_positive_count


class ScenarioConfig(BaseModel):
    story_type: str
    stages: Optional[int] = Field(default=None, ge=4, le=10)  # Truncates the template
    noise_level: NoiseLevel = NoiseLevel.MEDIUM
    seed: Optional[int] = None
    start_time: Optional[datetime] = None
    hostname: Optional[str] = None
    username: Optional[str] = None
    source_ip: Optional[str] = None
    alert_queue: Optional[AlertQueueConfig] = None  # Defaults to a mix derived from difficulty


# ============================================================================
# Event Models
# ============================================================================

class NetworkContext(BaseModel):
    source_ip: Optional[str] = None
    source_port: Optional[int] = None
    dest_ip: Optional[str] = None
    dest_port: Optional[int] = None
    protocol: Optional[str] = None


class ProcessTreeNode(BaseModel):
    process_id: str
    process_name: str
    command_line: str = ""
    parent_id: Optional[str] = None
    user: Optional[str] = None
    hostname: Optional[str] = None


class SimulatedEvent(BaseModel):
    id: str
    session_id: str
    scenario_id: Optional[str] = None
    source: LogSource
    kind: EventKind
    timestamp: datetime
    hostname: str

    # Grading (hidden from the trainee)
    is_malicious: bool = False
    threat_score: int = Field(default=0, ge=0, le=100)
    technique_id: Optional[str] = None
    stage: Optional[AttackStage] = None

    network_context: Optional[NetworkContext] = None
    process_tree: Optional[ProcessTreeNode] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    correlation_key: Optional[str] = None
    related_event_ids: List[str] = Field(default_factory=list)

    def trainee_view(self) -> Dict[str, Any]:
        data = self.model_dump(
            mode="json",
            exclude={"is_malicious", "threat_score", "technique_id", "stage", "correlation_key"},
        )
        data["details"].pop("isMalicious", None)
        return data


class AtomicTest(BaseModel):
    """Registry entry describing how one MITRE technique is emulated."""
    id: str
    technique_id: str
    name: str
    description: str
    stage: AttackStage
    executor: Literal["powershell", "command_prompt", "sh", "api"]
    command: str  # May contain #{argument} placeholders
    input_arguments: Dict[str, str] = Field(default_factory=dict)
    process_name: str
    emits: List[EventKind]  # 1-3 record kinds
    elevation_required: bool = False


class AtomicExecution(BaseModel):
    test_id: str
    technique_id: str
    stage: AttackStage
    command: str
    timestamp: datetime
    events: List[SimulatedEvent] = Field(default_factory=list)
    artifacts: List[Artifact] = Field(default_factory=list)
    success: bool = True


# ============================================================================
# Alert Models
# ============================================================================

class AffectedAsset(BaseModel):
    hostname: str
    ip: str
    user: Optional[str] = None


class Alert(BaseModel):
    id: str
    ticket_number: str  # INC-2026-000001
    session_id: str
    title: str
    severity: Severity
    alert_source: str  # EDR, SIEM, Firewall, IDS, Proxy
    detection_rule: str
    affected_assets: List[AffectedAsset] = Field(default_factory=list)
    mitre_techniques: List[str] = Field(default_factory=list)

    status: AlertStatus = AlertStatus.NEW
    assigned_to: str = "Your Queue"

    sla_deadline: datetime
    sla_window_seconds: int
    sla_remaining_seconds: int
    sla_status: SLAStatus = SLAStatus.ON_TIME

    priority_score: int = Field(ge=0, le=100)
    containment_required: bool = False
    initial_context: str
    related_event_ids: List[str] = Field(default_factory=list)

    is_true_positive: bool  # Hidden from the trainee, grading only

    created_at: datetime
    triaged_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    time_to_triage_seconds: Optional[float] = None

    def trainee_view(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"is_true_positive"})


class TriageRequest(BaseModel):
    status: AlertStatus


# ============================================================================
# Ground Truth & Evaluation Models
# ============================================================================

class GroundTruthIOC(BaseModel):
    ioc: str
    type: IOCType
    classification: IOCClass = IOCClass.MALICIOUS
    stage: Optional[AttackStage] = None
    technique_id: Optional[str] = None
    threat_score: int = 0
    explanation: str = ""


# Report records below are immutable once built; sequences are tuples.
_FROZEN = ConfigDict(frozen=True)


class IOCClassification(BaseModel):
    model_config = _FROZEN

    ioc: str
    type: IOCType
    user_tag: IOCTag
    actual_classification: IOCClass
    is_correct: bool
    stage: Optional[AttackStage] = None
    technique_id: Optional[str] = None


class StageStats(BaseModel):
    model_config = _FROZEN

    detected: int = 0
    missed: int = 0
    false_positives: int = 0
    total: int = 0


class MissedIOC(BaseModel):
    model_config = _FROZEN

    ioc: str
    type: IOCType
    stage: str
    technique_id: Optional[str] = None
    reason: str


class OverFlaggedIOC(BaseModel):
    model_config = _FROZEN

    ioc: str
    type: IOCType
    user_tag: IOCTag
    reason: str


class ReplayEntry(BaseModel):
    model_config = _FROZEN

    timestamp: datetime
    stage: AttackStage
    technique_id: str
    technique_name: str
    description: str
    iocs: Tuple[str, ...] = ()
    detected: bool


class EvaluationBreakdown(BaseModel):
    model_config = _FROZEN

    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    true_negatives: int = 0
    sla_breaches: int = 0


class EvaluationResult(BaseModel):
    """Final report produced at finalize time. Nothing in it can be changed afterwards."""
    model_config = _FROZEN

    mode: ScoringMode
    score: int = Field(ge=0, le=100)
    grade: Literal["A+", "A", "B", "C", "D", "F"]
    tp_rate: float
    fp_penalty: float
    fn_penalty: float
    breakdown: EvaluationBreakdown
    by_stage: Dict[str, StageStats] = Field(default_factory=dict)
    missed_iocs: Tuple[MissedIOC, ...] = ()
    over_flagged_iocs: Tuple[OverFlaggedIOC, ...] = ()
    all_classifications: Tuple[IOCClassification, ...] = ()
    red_team_replay: Tuple[ReplayEntry, ...] = ()
    recommendations: Tuple[str, ...] = ()
    mitre_techniques: Tuple[str, ...] = ()
    time_taken_seconds: float = 0.0


class FinalizeRequest(BaseModel):
    user_tags: Dict[str, IOCTag] = Field(default_factory=dict)
    time_taken_seconds: float = Field(default=0.0, ge=0)
    mode: Optional[ScoringMode] = None


# ============================================================================
# Session Models
# ============================================================================

class InvestigationSession(BaseModel):
    session_id: str
    seed: int
    story: ScenarioStory
    attack_chains: List[AttackChain] = Field(default_factory=list)
    events: List[SimulatedEvent] = Field(default_factory=list)
    alerts: List[Alert] = Field(default_factory=list)
    started_at: datetime
    status: Literal["running", "finalized"] = "running"
    evaluation: Optional[EvaluationResult] = None

    def trainee_view(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "story": self.story.trainee_view(),
            "events": [e.trainee_view() for e in self.events],
            "alerts": [a.trainee_view() for a in self.alerts],
        }
