"""Investigation evaluator - scores a trainee's IOC tags against ground truth.

Two scoring strategies share one pipeline (classification, per-stage
breakdown, red-team replay, recommendations):

- ``weighted``: stage-weighted partial credit. Tagged values outside the
  malicious ground truth count as benign, so flagging them is a false
  positive.
- ``alert_centric``: point based (+10 / +7 / +5, -15 / -5 / -10, speed and
  accuracy bonuses) normalized to 0-100, with benign trap domains planted in
  ground truth and false positives limited to traps and well-known domains.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from soctrainer.models import (
    Alert,
    AttackChain,
    AttackChainStage,
    AttackStage,
    EvaluationBreakdown,
    EvaluationResult,
    GroundTruthIOC,
    InvestigationSession,
    IOCClass,
    IOCClassification,
    IOCTag,
    MissedIOC,
    OverFlaggedIOC,
    ReplayEntry,
    ScoringMode,
    SimulatedEvent,
    StageStats,
)
from soctrainer.services.ground_truth import classify_ioc, extract_ground_truth_iocs
from soctrainer.services.timer import count_sla_breaches
from soctrainer.settings import settings

logger = logging.getLogger(__name__)

# Impact weight of an IOC by the stage that owns it
STAGE_WEIGHTS: Dict[AttackStage, float] = {
    AttackStage.CREDENTIAL_ACCESS: 1.5,
    AttackStage.IMPACT: 1.5,
    AttackStage.EXFILTRATION: 1.5,
    AttackStage.COMMAND_AND_CONTROL: 1.3,
    AttackStage.LATERAL_MOVEMENT: 1.2,
    AttackStage.PERSISTENCE: 1.1,
    AttackStage.DEFENSE_EVASION: 1.1,
}
DEFAULT_STAGE_WEIGHT = 1.0

# Credit for a correct tag on a malicious IOC, and penalty weight for a wrong one
TAG_CREDIT = {IOCTag.CONFIRMED_THREAT: 1.0, IOCTag.SUSPICIOUS: 0.5}
FALSE_POSITIVE_WEIGHT = {IOCTag.CONFIRMED_THREAT: 1.0, IOCTag.SUSPICIOUS: 0.3}

MAX_FP_PENALTY = 50
MAX_FN_PENALTY = 30

# Alert-centric points
POINTS_CONFIRMED = 10
POINTS_SUSPICIOUS = 7
POINTS_BENIGN_TRAP = 5
PENALTY_MISSED = 15
PENALTY_FALSE_POSITIVE = 5
PENALTY_SLA_BREACH = 10
EXPECTED_SECONDS_PER_ALERT = 300
WHITELISTED_DOMAINS = ("microsoft.com", "google.com", "github.com")

GRADE_THRESHOLDS = [(95, "A+"), (90, "A"), (80, "B"), (70, "C"), (60, "D")]

UNKNOWN_STAGE = "unknown"
UNATTRIBUTED_STAGE = "unattributed"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _flagged(tag: Optional[IOCTag]) -> bool:
    return tag in (IOCTag.CONFIRMED_THREAT, IOCTag.SUSPICIOUS)


def stage_weight(stage: Optional[AttackStage]) -> float:
    return STAGE_WEIGHTS.get(stage, DEFAULT_STAGE_WEIGHT) if stage else DEFAULT_STAGE_WEIGHT


def grade_for(score: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


@dataclass
class _Investigation:
    """Everything both scorers need, computed once."""
    tags: Dict[str, IOCTag]
    ground_truth: List[GroundTruthIOC]
    malicious: List[GroundTruthIOC]
    traps: List[GroundTruthIOC]
    classifications: List[IOCClassification]
    missed: List[GroundTruthIOC]
    sla_breaches: int
    alert_count: int
    time_taken_seconds: float
    false_positives: List[IOCClassification] = field(default_factory=list)


@dataclass
class _Score:
    score: int
    tp_rate: float
    fp_penalty: float
    fn_penalty: float
    breakdown: EvaluationBreakdown


def _classify(tags: Dict[str, IOCTag], ground_truth: List[GroundTruthIOC]) -> List[IOCClassification]:
    truth_by_value = {}
    for truth in ground_truth:
        truth_by_value.setdefault(truth.ioc, truth)

    classifications = []
    for ioc, tag in tags.items():
        truth = truth_by_value.get(ioc)
        actual = truth.classification if truth else IOCClass.BENIGN
        if _flagged(tag):
            correct = actual == IOCClass.MALICIOUS
        else:
            correct = actual == IOCClass.BENIGN
        classifications.append(IOCClassification(
            ioc=ioc,
            type=truth.type if truth else classify_ioc(ioc),
            user_tag=tag,
            actual_classification=actual,
            is_correct=correct,
            stage=truth.stage if truth else None,
            technique_id=truth.technique_id if truth else None,
        ))
    return classifications


# ============================================================================
# Scoring strategies
# ============================================================================

def _weighted_false_positives(inv: _Investigation) -> List[IOCClassification]:
    return [
        c for c in inv.classifications
        if _flagged(c.user_tag) and c.actual_classification == IOCClass.BENIGN
    ]


def _score_weighted(inv: _Investigation) -> _Score:
    weighted_tp = 0.0
    weighted_total = 0.0
    for truth in inv.malicious:
        weight = stage_weight(truth.stage)
        weighted_total += weight
        weighted_tp += weight * TAG_CREDIT.get(inv.tags.get(truth.ioc), 0.0)

    true_positives = sum(
        TAG_CREDIT[c.user_tag] for c in inv.classifications
        if _flagged(c.user_tag) and c.actual_classification == IOCClass.MALICIOUS
    )
    false_positives = sum(FALSE_POSITIVE_WEIGHT[c.user_tag] for c in inv.false_positives)
    true_negatives = sum(
        1 for c in inv.classifications
        if c.user_tag == IOCTag.BENIGN and c.actual_classification == IOCClass.BENIGN
    )
    total_benign = sum(1 for c in inv.classifications if c.actual_classification == IOCClass.BENIGN)
    missed = len(inv.missed)

    tp_rate = 100 * weighted_tp / weighted_total if weighted_total > 0 else 0.0
    fp_penalty = MAX_FP_PENALTY * false_positives / total_benign if total_benign > 0 else 0.0
    fn_penalty = MAX_FN_PENALTY * missed / len(inv.malicious) if inv.malicious else 0.0
    sla_penalty = settings.SLA_BREACH_PENALTY * inv.sla_breaches

    score = _round_half_up(_clamp(tp_rate - fp_penalty - fn_penalty - sla_penalty))
    return _Score(
        score=score,
        tp_rate=round(tp_rate, 2),
        fp_penalty=round(fp_penalty, 2),
        fn_penalty=round(fn_penalty, 2),
        breakdown=EvaluationBreakdown(
            true_positives=_round_half_up(true_positives),
            false_positives=_round_half_up(false_positives),
            false_negatives=missed,
            true_negatives=true_negatives,
            sla_breaches=inv.sla_breaches,
        ),
    )


def _is_whitelisted(value: str) -> bool:
    return any(domain in value for domain in WHITELISTED_DOMAINS)


def _alert_centric_false_positives(inv: _Investigation) -> List[IOCClassification]:
    trap_values = {t.ioc for t in inv.traps}
    return [
        c for c in inv.classifications
        if _flagged(c.user_tag)
        and c.actual_classification == IOCClass.BENIGN
        and (c.ioc in trap_values or _is_whitelisted(c.ioc))
    ]


def _score_alert_centric(inv: _Investigation) -> _Score:
    confirmed = sum(1 for t in inv.malicious if inv.tags.get(t.ioc) == IOCTag.CONFIRMED_THREAT)
    suspicious = sum(1 for t in inv.malicious if inv.tags.get(t.ioc) == IOCTag.SUSPICIOUS)
    missed = len(inv.malicious) - confirmed - suspicious
    correct_benign = sum(1 for t in inv.traps if inv.tags.get(t.ioc) == IOCTag.BENIGN)
    false_positives = len(inv.false_positives)

    expected = inv.alert_count * EXPECTED_SECONDS_PER_ALERT
    speed_bonus = 0
    if inv.time_taken_seconds < expected * 0.8:
        speed_bonus = 20
    elif inv.time_taken_seconds < expected * 0.9:
        speed_bonus = 10

    correct = confirmed + suspicious + correct_benign
    accuracy = 100 * correct / len(inv.ground_truth) if inv.ground_truth else 0.0
    accuracy_bonus = 10 if accuracy >= 95 else 5 if accuracy >= 90 else 0

    fp_points = false_positives * PENALTY_FALSE_POSITIVE
    fn_points = missed * PENALTY_MISSED
    base = (
        confirmed * POINTS_CONFIRMED
        + suspicious * POINTS_SUSPICIOUS
        + correct_benign * POINTS_BENIGN_TRAP
        - fn_points
        - fp_points
        - inv.sla_breaches * PENALTY_SLA_BREACH
        + speed_bonus
        + accuracy_bonus
    )
    max_score = len(inv.malicious) * POINTS_CONFIRMED + len(inv.traps) * POINTS_BENIGN_TRAP + 20 + 10

    return _Score(
        score=_round_half_up(_clamp(100 * base / max_score)),
        tp_rate=round(accuracy, 2),
        fp_penalty=float(fp_points),
        fn_penalty=float(fn_points),
        breakdown=EvaluationBreakdown(
            true_positives=confirmed + suspicious,
            false_positives=false_positives,
            false_negatives=missed,
            true_negatives=correct_benign,
            sla_breaches=inv.sla_breaches,
        ),
    )


_STRATEGIES: Dict[ScoringMode, Dict[str, Callable]] = {
    ScoringMode.WEIGHTED: {
        "false_positives": _weighted_false_positives,
        "score": _score_weighted,
    },
    ScoringMode.ALERT_CENTRIC: {
        "false_positives": _alert_centric_false_positives,
        "score": _score_alert_centric,
    },
}


# ============================================================================
# Shared report sections
# ============================================================================

def _by_stage(inv: _Investigation) -> Dict[str, StageStats]:
    counts: Dict[str, Dict[str, int]] = {}

    def bump(key: str, field_name: str):
        entry = counts.setdefault(key, {"detected": 0, "missed": 0, "false_positives": 0, "total": 0})
        entry[field_name] += 1

    for truth in inv.malicious:
        key = truth.stage.value if truth.stage else UNKNOWN_STAGE
        bump(key, "total")
        bump(key, "detected" if _flagged(inv.tags.get(truth.ioc)) else "missed")
    for c in inv.false_positives:
        bump(c.stage.value if c.stage else UNATTRIBUTED_STAGE, "false_positives")
    return {key: StageStats(**entry) for key, entry in counts.items()}


def _stage_iocs(inv: _Investigation, chain_stage: AttackChainStage,
                events_by_id: Dict[str, SimulatedEvent]) -> List[str]:
    """Indicators found in the stage's own records.

    Infrastructure reused across stages shows up in every stage that touched
    it, not only where it was first seen. Chains without recorded event ids
    fall back to ground-truth attribution.
    """
    stage_events = [events_by_id[i] for i in chain_stage.events if i in events_by_id]
    if stage_events:
        return [t.ioc for t in extract_ground_truth_iocs(stage_events)]
    return [
        t.ioc for t in inv.malicious
        if t.stage == chain_stage.stage and t.technique_id == chain_stage.technique_id
    ]


def _replay(inv: _Investigation, attack_chains: Sequence[AttackChain],
            events: Sequence[SimulatedEvent]) -> List[ReplayEntry]:
    events_by_id = {e.id: e for e in events}
    entries = []
    for chain in attack_chains:
        for chain_stage in chain.stages:
            iocs = _stage_iocs(inv, chain_stage, events_by_id)
            entries.append(ReplayEntry(
                timestamp=chain_stage.timestamp,
                stage=chain_stage.stage,
                technique_id=chain_stage.technique_id,
                technique_name=chain_stage.technique_name,
                description=chain_stage.description,
                iocs=iocs,
                detected=any(_flagged(inv.tags.get(ioc)) for ioc in iocs),
            ))
    entries.sort(key=lambda e: e.timestamp)
    return entries


def _recommendations(inv: _Investigation, by_stage: Dict[str, StageStats], score: int, missed: int) -> List[str]:
    recommendations = []
    if missed > 0:
        recommendations.append(f"You missed {missed} malicious IOCs. Focus on correlating events across log sources.")
    if inv.false_positives:
        recommendations.append(
            f"You flagged {len(inv.false_positives)} benign IOCs. Use threat intel enrichment to verify before tagging."
        )
    missed_stages = [stage for stage, s in by_stage.items() if s.missed > 0]
    if missed_stages:
        names = ", ".join(stage.replace("-", " ") for stage in missed_stages)
        recommendations.append(f"Consider reviewing {names} stages more carefully.")
    if inv.sla_breaches > 0:
        recommendations.append(
            f"You breached {inv.sla_breaches} SLA deadline(s). Prioritize Critical and High severity alerts first."
        )
    if score >= 90:
        recommendations.append("Excellent investigation! You demonstrated strong threat hunting skills.")
    elif score >= 70:
        recommendations.append("Good work! Review missed IOCs to improve your detection rate.")
    else:
        recommendations.append("Practice correlating events across different log sources to improve detection.")
    return recommendations


# ============================================================================
# Entry points
# ============================================================================

def evaluate_investigation(
    user_tags: Mapping[str, IOCTag],
    events: Iterable[SimulatedEvent],
    attack_chains: Sequence[AttackChain] = (),
    alerts: Sequence[Alert] = (),
    mode: Optional[ScoringMode] = None,
    time_taken_seconds: float = 0.0,
) -> EvaluationResult:
    """Score a set of IOC tags. Pure: identical inputs give identical output."""
    mode = ScoringMode(mode or settings.SCORING_MODE)
    strategy = _STRATEGIES[mode]
    tags = {ioc: IOCTag(tag) for ioc, tag in user_tags.items()}
    events = list(events)

    ground_truth = extract_ground_truth_iocs(
        events, include_benign_traps=mode == ScoringMode.ALERT_CENTRIC
    )
    malicious = [t for t in ground_truth if t.classification == IOCClass.MALICIOUS]
    inv = _Investigation(
        tags=tags,
        ground_truth=ground_truth,
        malicious=malicious,
        traps=[t for t in ground_truth if t.classification == IOCClass.BENIGN],
        classifications=_classify(tags, ground_truth),
        missed=[t for t in malicious if t.ioc not in tags],
        sla_breaches=count_sla_breaches(alerts),
        alert_count=len(alerts),
        time_taken_seconds=time_taken_seconds,
    )
    inv.false_positives = strategy["false_positives"](inv)

    scored: _Score = strategy["score"](inv)
    by_stage = _by_stage(inv)

    techniques: List[str] = []
    for truth in malicious:
        if truth.technique_id and truth.technique_id not in techniques:
            techniques.append(truth.technique_id)

    result = EvaluationResult(
        mode=mode,
        score=scored.score,
        grade=grade_for(scored.score),
        tp_rate=scored.tp_rate,
        fp_penalty=scored.fp_penalty,
        fn_penalty=scored.fn_penalty,
        breakdown=scored.breakdown,
        by_stage=by_stage,
        missed_iocs=[
            MissedIOC(
                ioc=t.ioc,
                type=t.type,
                stage=t.stage.value if t.stage else UNKNOWN_STAGE,
                technique_id=t.technique_id,
                reason=f"This {t.type.value} was part of the {t.stage.value if t.stage else UNKNOWN_STAGE} stage but was not tagged.",
            )
            for t in inv.missed
        ],
        over_flagged_iocs=[
            OverFlaggedIOC(
                ioc=c.ioc,
                type=c.type,
                user_tag=c.user_tag,
                reason=f"This {c.type.value} was flagged as {c.user_tag.value} but is actually benign.",
            )
            for c in inv.false_positives
        ],
        all_classifications=inv.classifications,
        red_team_replay=_replay(inv, attack_chains, events),
        recommendations=_recommendations(inv, by_stage, scored.score, scored.breakdown.false_negatives),
        mitre_techniques=techniques,
        time_taken_seconds=time_taken_seconds,
    )
    logger.info(
        f"[EVAL] mode={mode.value} score={result.score} grade={result.grade} "
        f"tp={scored.breakdown.true_positives} fp={scored.breakdown.false_positives} fn={scored.breakdown.false_negatives}"
    )
    return result


def evaluate(
    user_tags: Mapping[str, IOCTag],
    session: InvestigationSession,
    mode: Optional[ScoringMode] = None,
    time_taken_seconds: float = 0.0,
) -> EvaluationResult:
    """Score tags against a generated session."""
    return evaluate_investigation(
        user_tags,
        session.events,
        attack_chains=session.attack_chains,
        alerts=session.alerts,
        mode=mode,
        time_taken_seconds=time_taken_seconds,
    )
