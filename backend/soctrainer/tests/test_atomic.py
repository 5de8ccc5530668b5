"""Tests for the technique log synthesizer."""
from datetime import timedelta

import pytest

from soctrainer.errors import UnknownTechniqueError
from soctrainer.models import AttackStage, EventKind, LogSource
from soctrainer.services.atomic import (
    ATOMIC_TESTS,
    carry_forward_artifacts,
    execute_atomic_test,
    execute_attack_chain,
    render_command,
)
from soctrainer.services.log_builders import INTERNAL_DNS_SERVER, build_event
from conftest import START


def test_registry_entries_emit_one_to_three_records():
    """Test every registered technique emits between 1 and 3 record kinds."""
    for test in ATOMIC_TESTS.values():
        assert 1 <= len(test.emits) <= 3


def test_unknown_technique_raises(ctx):
    """Test an unregistered technique id fails."""
    with pytest.raises(UnknownTechniqueError):
        execute_atomic_test("T9999", {}, ctx)


def test_records_are_malicious_and_attributed(ctx):
    """Test emitted records carry technique, stage and host context."""
    execution = execute_atomic_test(
        "T1059.001",
        {"hostname": "WIN-WS07", "username": "CORP\\jsmith", "timestamp": START, "scenario_id": "scenario-1"},
        ctx,
    )

    assert len(execution.events) == 2
    for event in execution.events:
        assert event.is_malicious is True
        assert event.technique_id == "T1059.001"
        assert event.stage == AttackStage.EXECUTION
        assert event.hostname == "WIN-WS07"
        assert event.correlation_key == "scenario-1:T1059.001"
    assert execution.events[0].timestamp == START


def test_stage_override_from_context(ctx):
    """Test the chain stage in the context overrides the registry stage."""
    execution = execute_atomic_test("T1078", {"stage": AttackStage.PERSISTENCE}, ctx)

    assert execution.stage == AttackStage.PERSISTENCE
    assert all(e.stage == AttackStage.PERSISTENCE for e in execution.events)


def test_records_link_to_each_other(ctx):
    """Test records from one execution reference their siblings."""
    execution = execute_atomic_test("T1071.001", {}, ctx)
    ids = {e.id for e in execution.events}

    for event in execution.events:
        assert set(event.related_event_ids) == ids - {event.id}


def test_context_overrides_arguments(ctx):
    """Test context values replace registry example arguments."""
    execution = execute_atomic_test(
        "T1071.001",
        {"c2_domain": "bad-beacon.example", "c2_ip": "5.188.86.172"},
        ctx,
    )

    assert "bad-beacon.example" in execution.command
    network = next(e for e in execution.events if e.kind == EventKind.NETWORK_CONNECT)
    assert network.network_context.dest_ip == "5.188.86.172"
    http = next(e for e in execution.events if e.kind == EventKind.HTTP_REQUEST)
    assert http.source == LogSource.ZEEK
    assert http.details["host"] == "bad-beacon.example"


def test_dns_records_point_at_internal_resolver(ctx):
    """Test DNS queries target the internal resolver and answer with the C2 IP."""
    execution = execute_atomic_test("T1071.001", {"c2_ip": "5.188.86.172"}, ctx)
    dns = next(e for e in execution.events if e.kind == EventKind.DNS_QUERY)

    assert dns.network_context.dest_ip == INTERNAL_DNS_SERVER
    assert dns.details["QueryResults"] == "5.188.86.172"


def test_artifacts_extracted_from_records(ctx):
    """Test the returned artifacts describe what was generated."""
    execution = execute_atomic_test("T1003", {"username": "CORP\\jsmith"}, ctx)
    types = {a.type for a in execution.artifacts}

    assert {"process", "user", "file", "hash", "command"} <= types
    user = next(a for a in execution.artifacts if a.type == "user")
    assert user.value == "CORP\\jsmith"


def test_carry_forward_threads_discovered_values(ctx):
    """Test private IPs become lateral targets and public ones become C2."""
    execution = execute_atomic_test("T1021.002", {"username": "CORP\\admin"}, ctx)
    context = carry_forward_artifacts({}, execution)

    assert context["lateral_target"] == "10.0.1.50"
    assert context["username"] == "CORP\\admin"

    beacon = execute_atomic_test("T1071.001", {"c2_ip": "5.188.86.172", "c2_domain": "bad.example"}, ctx)
    context = carry_forward_artifacts(context, beacon)
    assert context["c2_ip"] == "5.188.86.172"
    assert context["c2_domain"] == "bad.example"


def test_chain_gaps_between_one_and_six_minutes(ctx):
    """Test executions are spaced 1-6 minutes apart."""
    executions = execute_attack_chain(["T1566.001", "T1059.001", "T1003"], {"timestamp": START}, ctx)

    assert len(executions) == 3
    for previous, current in zip(executions, executions[1:]):
        gap = current.timestamp - previous.timestamp
        assert timedelta(minutes=1) <= gap <= timedelta(minutes=6)


def test_chain_uses_registry_stage_per_technique(ctx):
    """Test each chained technique keeps its own target stage."""
    executions = execute_attack_chain(["T1059.001", "T1003"], {"stage": AttackStage.IMPACT}, ctx)

    assert executions[0].stage == AttackStage.IMPACT
    assert executions[1].stage == AttackStage.CREDENTIAL_ACCESS


def test_render_command_leaves_unknown_placeholders():
    """Test placeholders without a value are kept verbatim."""
    assert render_command("net use #{target} #{missing}", {"target": "10.0.0.5"}) == "net use 10.0.0.5 #{missing}"


def test_benign_records_score_low(ctx):
    """Test benign records get a low threat score and no attribution."""
    event = build_event(EventKind.PROCESS_CREATE, False, {"technique_id": "T1003"}, ctx)

    assert event.threat_score <= 20
    assert event.technique_id is None
    assert event.stage is None


def test_threat_score_override(ctx):
    """Test an explicit threat score wins over the kind default."""
    event = build_event(EventKind.FILE_CREATE, True, {"threat_score": 99}, ctx)
    assert event.threat_score == 99
