"""Tests for ground-truth IOC extraction."""
from soctrainer.models import AttackStage, IOCClass, IOCType
from soctrainer.services.ground_truth import BENIGN_TRAPS, classify_ioc, extract_ground_truth_iocs
from conftest import make_event

HASH = "A" * 64


def test_classify_ioc_precedence():
    """Test IPv4 > hash > PID > domain."""
    assert classify_ioc("185.220.101.47") == IOCType.IP
    assert classify_ioc(HASH) == IOCType.HASH
    assert classify_ioc("4242") == IOCType.PID
    assert classify_ioc("evil.example") == IOCType.DOMAIN
    assert classify_ioc("1234.1.1.1") == IOCType.DOMAIN


def test_classify_ioc_accepts_zero_padded_octets():
    """Test dotted quads classify by shape, including leading zeros."""
    assert classify_ioc("010.0.0.1") == IOCType.IP
    assert classify_ioc(" 192.168.001.010 ") == IOCType.IP
    assert classify_ioc("10.0.0") == IOCType.DOMAIN
    assert classify_ioc("1.2.3.4.5") == IOCType.DOMAIN


def test_public_destination_ip_extracted():
    """Test a public destination IP becomes an IOC with the event's attribution."""
    events = [make_event("e1", AttackStage.COMMAND_AND_CONTROL, "T1071.001", dest_ip="185.220.101.47")]
    iocs = extract_ground_truth_iocs(events)

    assert len(iocs) == 1
    assert iocs[0].ioc == "185.220.101.47"
    assert iocs[0].type == IOCType.IP
    assert iocs[0].stage == AttackStage.COMMAND_AND_CONTROL
    assert iocs[0].technique_id == "T1071.001"
    assert iocs[0].classification == IOCClass.MALICIOUS


def test_private_and_loopback_ips_skipped():
    """Test internal addresses are never IOCs."""
    events = [
        make_event("e1", AttackStage.LATERAL_MOVEMENT, dest_ip="10.0.1.50"),
        make_event("e2", AttackStage.LATERAL_MOVEMENT, dest_ip="127.0.0.1"),
        make_event("e3", AttackStage.LATERAL_MOVEMENT, dest_ip="0.0.0.0"),
    ]
    assert extract_ground_truth_iocs(events) == []


def test_low_score_events_ignored_unless_flagged():
    """Test the threat-score filter and the explicit isMalicious flag."""
    events = [
        make_event("e1", dest_ip="8.8.8.8", threat_score=10),
        make_event("e2", dest_ip="45.146.164.110", threat_score=10, details={"isMalicious": True}),
    ]
    iocs = extract_ground_truth_iocs(events)

    assert [i.ioc for i in iocs] == ["45.146.164.110"]


def test_domain_hash_and_pid_extracted():
    """Test QueryName, SHA256 from Hashes and high-score PIDs."""
    event = make_event(
        "e1", AttackStage.CREDENTIAL_ACCESS, "T1003",
        domain="evil-command-control.net",
        hashes=f"MD5={'B' * 32},SHA256={HASH}",
        process_id="4242",
        threat_score=85,
    )
    found = {(i.type, i.ioc) for i in extract_ground_truth_iocs([event])}

    assert found == {
        (IOCType.DOMAIN, "evil-command-control.net"),
        (IOCType.HASH, HASH),
        (IOCType.PID, "4242"),
    }


def test_pid_needs_higher_score():
    """Test PIDs are only kept above the PID threshold."""
    event = make_event("e1", AttackStage.EXECUTION, domain="x.example", process_id="4242", threat_score=70)
    types = {i.type for i in extract_ground_truth_iocs([event])}

    assert IOCType.PID not in types


def test_malformed_fields_skipped():
    """Test junk values are ignored instead of failing extraction."""
    event = make_event(
        "e1", AttackStage.EXECUTION,
        process_id="not-a-pid",
        hashes="SHA256=tooshort",
        details={"host": 12345},
    )
    assert extract_ground_truth_iocs([event]) == []


def test_first_occurrence_fixes_attribution():
    """Test duplicates keep the earliest event's stage."""
    events = [
        make_event("e1", AttackStage.EXECUTION, "T1059.001", dest_ip="185.220.101.47", minutes=0),
        make_event("e2", AttackStage.EXFILTRATION, "T1048", dest_ip="185.220.101.47", minutes=5),
    ]
    iocs = extract_ground_truth_iocs(events)

    assert len(iocs) == 1
    assert iocs[0].stage == AttackStage.EXECUTION


def test_benign_traps_only_on_request():
    """Test trap domains are added as benign only when asked."""
    events = [make_event("e1", AttackStage.EXECUTION, dest_ip="185.220.101.47")]

    assert len(extract_ground_truth_iocs(events)) == 1
    with_traps = extract_ground_truth_iocs(events, include_benign_traps=True)
    traps = [i for i in with_traps if i.classification == IOCClass.BENIGN]
    assert {t.ioc for t in traps} == {domain for domain, _ in BENIGN_TRAPS}


def test_thresholds_can_be_overridden():
    """Test explicit thresholds replace the configured ones."""
    event = make_event("e1", AttackStage.EXECUTION, dest_ip="185.220.101.47", threat_score=40)

    assert extract_ground_truth_iocs([event]) == []
    assert len(extract_ground_truth_iocs([event], min_threat_score=30)) == 1
