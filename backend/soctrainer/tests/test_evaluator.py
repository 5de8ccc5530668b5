"""Tests for the investigation evaluator."""
from datetime import timedelta

import pytest
from pydantic import ValidationError

from soctrainer.models import (
    AlertQueueConfig,
    AttackChain,
    AttackChainStage,
    AttackStage,
    IOCTag,
    ScoringMode,
    SLAStatus,
)
from soctrainer.services.alerts import AlertGenerator
from soctrainer.services.evaluator import evaluate_investigation, grade_for
from soctrainer.services.ground_truth import BENIGN_TRAPS
from soctrainer.settings import settings
from conftest import START, make_event

IP_A = "185.220.101.47"  # initial-access
IP_B = "45.146.164.110"  # credential-access

CONFIRMED = IOCTag.CONFIRMED_THREAT
SUSPICIOUS = IOCTag.SUSPICIOUS
BENIGN = IOCTag.BENIGN


@pytest.fixture
def events():
    return [
        make_event("e1", AttackStage.INITIAL_ACCESS, "T1566.001", dest_ip=IP_A, minutes=0),
        make_event("e2", AttackStage.CREDENTIAL_ACCESS, "T1003", dest_ip=IP_B, minutes=5),
        make_event("e3", dest_ip="8.8.8.8", threat_score=5, minutes=7),
    ]


@pytest.fixture
def chain():
    return AttackChain(
        id="chain-1",
        scenario_id="scenario-1",
        session_id="session-test",
        name="Test Chain",
        description="Two stage chain",
        start_time=START,
        stages=[
            AttackChainStage(stage=AttackStage.CREDENTIAL_ACCESS, technique_id="T1003",
                             technique_name="OS Credential Dumping", timestamp=START + timedelta(minutes=5),
                             description="Executed OS Credential Dumping"),
            AttackChainStage(stage=AttackStage.INITIAL_ACCESS, technique_id="T1566.001",
                             technique_name="Phishing Attachment", timestamp=START,
                             description="Executed Phishing Attachment"),
        ],
    )


def _weighted(tags, events, **kwargs):
    return evaluate_investigation(tags, events, mode=ScoringMode.WEIGHTED, **kwargs)


def test_stage_weighting_worked_example(events):
    """Test a credential-access hit outscores an initial-access hit (25 vs 45)."""
    only_a = _weighted({IP_A: CONFIRMED}, events)
    only_b = _weighted({IP_B: CONFIRMED}, events)

    assert only_a.tp_rate == 40.0
    assert only_a.fn_penalty == 15.0
    assert only_a.score == 25
    assert only_b.tp_rate == 60.0
    assert only_b.score == 45
    assert only_b.score > only_a.score


def test_suspicious_gets_half_credit(events):
    """Test a suspicious tag earns half the stage weight."""
    result = _weighted({IP_A: SUSPICIOUS}, events)

    assert result.tp_rate == 20.0
    assert result.score == 5


def test_no_tags_scores_zero(events):
    """Test an empty submission scores zero with every IOC missed."""
    result = _weighted({}, events)

    assert result.score == 0
    assert result.grade == "F"
    assert {m.ioc for m in result.missed_iocs} == {IP_A, IP_B}


def test_all_confirmed_scores_full_marks(events):
    """Test tagging every malicious IOC yields 100 and A+."""
    result = _weighted({IP_A: CONFIRMED, IP_B: CONFIRMED}, events)

    assert result.score == 100
    assert result.grade == "A+"
    assert result.breakdown.true_positives == 2
    assert result.missed_iocs == ()


def test_flagging_benign_value_is_false_positive(events):
    """Test a tagged value outside the ground truth counts against the trainee."""
    result = _weighted({IP_A: CONFIRMED, IP_B: CONFIRMED, "google.com": CONFIRMED}, events)

    assert result.fp_penalty == 50.0
    assert result.score == 50
    assert [o.ioc for o in result.over_flagged_iocs] == ["google.com"]


def test_benign_tag_on_benign_value_is_true_negative(events):
    """Test correctly clearing a value does not cost points."""
    result = _weighted({IP_A: CONFIRMED, IP_B: CONFIRMED, "8.8.8.8": BENIGN}, events)

    assert result.score == 100
    assert result.breakdown.true_negatives == 1


def test_evaluation_is_pure(events):
    """Test identical inputs give identical reports."""
    tags = {IP_A: SUSPICIOUS, "github.com": CONFIRMED}

    assert _weighted(tags, events) == _weighted(tags, events)


def test_score_always_in_range(events):
    """Test heavy over-flagging is clamped at zero."""
    tags = {f"noise{i}.example": CONFIRMED for i in range(20)}
    result = _weighted(tags, events)

    assert 0 <= result.score <= 100
    assert result.score == 0


def test_empty_ground_truth():
    """Test a session with nothing malicious scores zero without failing."""
    result = _weighted({"google.com": BENIGN}, [make_event("e1", dest_ip="8.8.8.8", threat_score=1)])

    assert result.score == 0
    assert result.tp_rate == 0.0
    assert result.by_stage == {}


def test_by_stage_breakdown(events):
    """Test per-stage detection counts and unattributed false positives."""
    result = _weighted({IP_B: CONFIRMED, "google.com": CONFIRMED}, events)

    assert result.by_stage["credential-access"].detected == 1
    assert result.by_stage["initial-access"].missed == 1
    assert result.by_stage["unattributed"].false_positives == 1


def test_red_team_replay_sorted_and_marked(events, chain):
    """Test replay entries follow the timeline and show what was caught."""
    result = _weighted({IP_B: CONFIRMED}, events, attack_chains=[chain])
    replay = result.red_team_replay

    assert [r.stage for r in replay] == [AttackStage.INITIAL_ACCESS, AttackStage.CREDENTIAL_ACCESS]
    assert replay[0].iocs == (IP_A,)
    assert replay[0].detected is False
    assert replay[1].detected is True
    assert result.mitre_techniques == ("T1566.001", "T1003")


def test_recommendations_name_missed_stages(events):
    """Test feedback mentions misses and the stages to review."""
    result = _weighted({IP_B: CONFIRMED}, events)
    text = " ".join(result.recommendations)

    assert "missed 1 malicious IOCs" in text
    assert "initial access" in text


def test_sla_breach_penalty_in_weighted_mode(events, ctx, monkeypatch):
    """Test breached alerts cost the configured points per breach."""
    config = AlertQueueConfig(true_positive_count=1, false_positive_count=0, total_count=1)
    alerts = AlertGenerator(ctx).generate_alert_queue(config)
    alerts[0].sla_status = SLAStatus.BREACHED
    tags = {IP_A: CONFIRMED, IP_B: CONFIRMED}

    assert _weighted(tags, events, alerts=alerts).score == 100

    monkeypatch.setattr(settings, "SLA_BREACH_PENALTY", 10.0)
    result = _weighted(tags, events, alerts=alerts)
    assert result.score == 90
    assert result.breakdown.sla_breaches == 1
    assert any("SLA" in r for r in result.recommendations)


def test_alert_centric_perfect_run(events, ctx):
    """Test full marks with every IOC right, every trap cleared, and a fast finish."""
    config = AlertQueueConfig(true_positive_count=1, false_positive_count=0, total_count=1)
    alerts = AlertGenerator(ctx).generate_alert_queue(config)
    tags = {IP_A: CONFIRMED, IP_B: CONFIRMED}
    tags.update({domain: BENIGN for domain, _ in BENIGN_TRAPS})

    result = evaluate_investigation(
        tags, events, alerts=alerts, mode=ScoringMode.ALERT_CENTRIC, time_taken_seconds=60
    )

    assert result.mode == ScoringMode.ALERT_CENTRIC
    assert result.score == 100
    assert result.breakdown.true_negatives == len(BENIGN_TRAPS)


def test_alert_centric_false_positives_limited_to_known_benign(events):
    """Test only traps and well-known domains count as over-flagged."""
    result = evaluate_investigation(
        {IP_A: CONFIRMED, "unknown-site.example": CONFIRMED, "github.com": SUSPICIOUS},
        events,
        mode=ScoringMode.ALERT_CENTRIC,
    )

    assert [o.ioc for o in result.over_flagged_iocs] == ["github.com"]
    assert result.fp_penalty == 5.0
    assert result.fn_penalty == 15.0


def test_alert_centric_benign_tag_on_malicious_is_missed(events):
    """Test clearing a malicious IOC counts as a miss."""
    result = evaluate_investigation({IP_A: BENIGN}, events, mode=ScoringMode.ALERT_CENTRIC)

    assert result.breakdown.false_negatives == 2


def test_grade_thresholds():
    """Test letter grade boundaries."""
    assert grade_for(95) == "A+"
    assert grade_for(94) == "A"
    assert grade_for(90) == "A"
    assert grade_for(80) == "B"
    assert grade_for(70) == "C"
    assert grade_for(60) == "D"
    assert grade_for(59) == "F"


def test_report_is_immutable(events):
    """Test nested report sections cannot be edited after scoring."""
    result = _weighted({IP_A: CONFIRMED}, events)

    with pytest.raises(ValidationError):
        result.by_stage["initial-access"].detected = 5
    with pytest.raises(ValidationError):
        result.breakdown.true_positives = 99
    with pytest.raises(AttributeError):
        result.missed_iocs.append(result.missed_iocs[0])
    assert isinstance(result.red_team_replay, tuple)
