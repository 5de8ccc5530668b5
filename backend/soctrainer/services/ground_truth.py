"""Ground-truth IOC extraction from simulated events."""
import ipaddress
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from soctrainer.models import GroundTruthIOC, IOCClass, IOCType, SimulatedEvent
from soctrainer.settings import settings

logger = logging.getLogger(__name__)

_IPV4 = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")
_HEX64 = re.compile(r"^[A-Fa-f0-9]{64}$")
_DIGITS = re.compile(r"^\d+$")
_SHA256_FIELD = re.compile(r"SHA256=([A-Fa-f0-9]{64})(?![A-Fa-f0-9])")

# Well-known domains planted as "don't over-flag this" traps
BENIGN_TRAPS = [
    ("docs.microsoft.com", "Microsoft documentation site"),
    ("update.microsoft.com", "Windows Update service"),
    ("fonts.googleapis.com", "Google Fonts CDN"),
]


def classify_ioc(value: str) -> IOCType:
    """Infer an IOC type. Precedence: IPv4 > SHA-256 hash > numeric PID > domain.

    IPv4 is a shape check on four dotted groups of 1-3 digits, so zero-padded
    octets (``010.0.0.1``) still classify as an IP.
    """
    value = value.strip()
    if _IPV4.match(value):
        return IOCType.IP
    if _HEX64.match(value):
        return IOCType.HASH
    if _DIGITS.match(value):
        return IOCType.PID
    return IOCType.DOMAIN


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _public_ip(value: Any) -> Optional[str]:
    text = _text(value)
    if text is None:
        return None
    try:
        address = ipaddress.ip_address(text)
    except ValueError:
        return None
    if address.is_private or address.is_loopback or address.is_unspecified:
        return None
    return text


def _is_relevant(event: SimulatedEvent, min_threat_score: int) -> bool:
    details = event.details if isinstance(event.details, dict) else {}
    return event.threat_score >= min_threat_score or details.get("isMalicious") is True


def _event_iocs(event: SimulatedEvent, pid_min_threat_score: int) -> List[Dict[str, Any]]:
    found = []
    stage = event.stage.value if event.stage else "unknown"
    details = event.details if isinstance(event.details, dict) else {}

    if event.network_context:
        ip = _public_ip(event.network_context.dest_ip)
        if ip:
            found.append({"ioc": ip, "type": IOCType.IP,
                          "explanation": f"Destination IP contacted during the {stage} stage"})

    for field in ("QueryName", "host"):
        domain = _text(details.get(field))
        if domain:
            found.append({"ioc": domain, "type": IOCType.DOMAIN,
                          "explanation": f"Domain resolved or requested during the {stage} stage"})

    hashes = _text(details.get("Hashes"))
    if hashes:
        match = _SHA256_FIELD.search(hashes)
        if match:
            found.append({"ioc": match.group(1), "type": IOCType.HASH,
                          "explanation": f"File hash observed during the {stage} stage"})

    if event.process_tree and event.threat_score >= pid_min_threat_score:
        pid = _text(event.process_tree.process_id)
        if pid and _DIGITS.match(pid):
            found.append({"ioc": pid, "type": IOCType.PID,
                          "explanation": f"Process {event.process_tree.process_name} spawned during the {stage} stage"})
    return found


def extract_ground_truth_iocs(
    events: Iterable[SimulatedEvent],
    include_benign_traps: bool = False,
    min_threat_score: Optional[int] = None,
    pid_min_threat_score: Optional[int] = None,
) -> List[GroundTruthIOC]:
    """Deduplicated list of the malicious IOCs hidden in ``events``.

    Events must be in chronological order: the first occurrence of a
    ``type:value`` key fixes its stage and technique attribution.
    Malformed fields are skipped.
    """
    min_score = settings.GROUND_TRUTH_MIN_THREAT_SCORE if min_threat_score is None else min_threat_score
    pid_score = settings.PID_MIN_THREAT_SCORE if pid_min_threat_score is None else pid_min_threat_score

    iocs: List[GroundTruthIOC] = []
    seen = set()
    for event in events:
        if not _is_relevant(event, min_score):
            continue
        for item in _event_iocs(event, pid_score):
            key = f"{item['type'].value}:{item['ioc']}"
            if key in seen:
                continue
            seen.add(key)
            iocs.append(GroundTruthIOC(
                ioc=item["ioc"],
                type=item["type"],
                classification=IOCClass.MALICIOUS,
                stage=event.stage,
                technique_id=event.technique_id,
                threat_score=event.threat_score,
                explanation=item["explanation"],
            ))

    if include_benign_traps:
        for domain, description in BENIGN_TRAPS:
            if f"{IOCType.DOMAIN.value}:{domain}" not in seen:
                iocs.append(GroundTruthIOC(
                    ioc=domain,
                    type=IOCType.DOMAIN,
                    classification=IOCClass.BENIGN,
                    explanation=f"{description} - legitimate traffic, should not be flagged",
                ))

    logger.debug(f"[EVAL] Extracted {len(iocs)} ground-truth IOCs")
    return iocs
