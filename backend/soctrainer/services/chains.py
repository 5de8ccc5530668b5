"""Attack chain templates and scenario story generation."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from soctrainer.errors import UnknownScenarioError
from soctrainer.models import (
    AttackChain,
    AttackChainStage,
    AttackStage,
    Difficulty,
    Narrative,
    ScenarioStory,
    TimelineEvent,
)
from soctrainer.services.context import SessionContext

logger = logging.getLogger(__name__)

# Chance that a stage after the first shows up in the trainee's timeline
VISIBILITY_PROBABILITY = 0.7
DETECTION_PROBABILITY = 0.5
MIN_STAGE_DELAY_MINUTES = 2
MAX_STAGE_DELAY_MINUTES = 10

S = AttackStage

ATTACK_CHAIN_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "ransomware-deployment": {
        "name": "Ransomware Deployment Chain",
        "description": "Full ransomware attack from initial access to encryption",
        "stages": [
            (S.INITIAL_ACCESS, "T1566.001", "Phishing: Spearphishing Attachment"),
            (S.EXECUTION, "T1059.001", "PowerShell Execution"),
            (S.PERSISTENCE, "T1547.001", "Registry Run Keys"),
            (S.COMMAND_AND_CONTROL, "T1071.001", "Web Protocols C2"),
            (S.EXFILTRATION, "T1048", "Exfiltration Over HTTP"),
            (S.IMPACT, "T1486", "Data Encrypted for Impact"),
        ],
    },
    "credential-harvesting": {
        "name": "Credential Harvesting Chain",
        "description": "Steal credentials and use them for lateral movement",
        "stages": [
            (S.INITIAL_ACCESS, "T1566.001", "Phishing Attachment"),
            (S.EXECUTION, "T1059.001", "PowerShell Execution"),
            (S.CREDENTIAL_ACCESS, "T1003", "OS Credential Dumping"),
            (S.LATERAL_MOVEMENT, "T1021.002", "SMB/Windows Admin Shares"),
            (S.COLLECTION, "T1005", "Data from Local System"),
            (S.EXFILTRATION, "T1048", "Exfiltration Over HTTP"),
        ],
    },
    "apt-persistence": {
        "name": "APT Persistence Chain",
        "description": "Advanced persistent threat establishing long-term access",
        "stages": [
            (S.INITIAL_ACCESS, "T1566.001", "Spearphishing Attachment"),
            (S.EXECUTION, "T1059.001", "PowerShell Execution"),
            (S.PERSISTENCE, "T1053.005", "Scheduled Task"),
            (S.DEFENSE_EVASION, "T1070.004", "File Deletion"),
            (S.COMMAND_AND_CONTROL, "T1071.001", "Web Protocols C2"),
            (S.DISCOVERY, "T1083", "File and Directory Discovery"),
        ],
    },
    "apt29-cozy-bear": {
        "name": "APT29 (Cozy Bear) - Multi-Day Campaign",
        "description": "APT29-style campaign: phishing, credential dumping, lateral movement and exfiltration over several days",
        "stages": [
            (S.INITIAL_ACCESS, "T1566.001", "Spearphishing Attachment (Day 1)"),
            (S.EXECUTION, "T1059.001", "PowerShell Execution"),
            (S.PERSISTENCE, "T1053.005", "Scheduled Task"),
            (S.DEFENSE_EVASION, "T1070.004", "File Deletion"),
            (S.CREDENTIAL_ACCESS, "T1003", "OS Credential Dumping (LSASS)"),
            (S.DISCOVERY, "T1083", "File and Directory Discovery"),
            (S.DISCOVERY, "T1018", "Remote System Discovery"),
            (S.LATERAL_MOVEMENT, "T1021.002", "SMB/Windows Admin Shares (Day 2)"),
            (S.COLLECTION, "T1005", "Data from Local System"),
            (S.COMMAND_AND_CONTROL, "T1071.001", "Web Protocols C2"),
            (S.EXFILTRATION, "T1048", "Exfiltration Over HTTP"),
        ],
    },
    "ransomware-lockbit": {
        "name": "LockBit Ransomware Deployment",
        "description": "LockBit-style ransomware attack from initial compromise to encryption",
        "stages": [
            (S.INITIAL_ACCESS, "T1566.001", "Phishing Email with Malicious Attachment"),
            (S.EXECUTION, "T1059.001", "PowerShell Download and Execute"),
            (S.PERSISTENCE, "T1547.001", "Registry Run Keys"),
            (S.DEFENSE_EVASION, "T1070.004", "Indicator Removal on Host"),
            (S.DISCOVERY, "T1083", "File and Directory Discovery"),
            (S.DISCOVERY, "T1018", "Remote System Discovery"),
            (S.LATERAL_MOVEMENT, "T1021.002", "SMB Lateral Movement"),
            (S.COMMAND_AND_CONTROL, "T1071.001", "C2 Beaconing"),
            (S.COLLECTION, "T1005", "Data Collection"),
            (S.EXFILTRATION, "T1048", "Data Exfiltration"),
            (S.IMPACT, "T1486", "Data Encrypted for Impact"),
        ],
    },
    "insider-threat": {
        "name": "Insider Threat - Data Theft",
        "description": "Employee abusing legitimate access to steal data",
        "stages": [
            (S.INITIAL_ACCESS, "T1078", "Valid Accounts (Insider Access)"),
            (S.EXECUTION, "T1059.001", "PowerShell for Data Collection"),
            (S.DISCOVERY, "T1083", "File and Directory Discovery"),
            (S.COLLECTION, "T1005", "Data from Local System"),
            (S.COLLECTION, "T1039", "Data from Network Shared Drive"),
            (S.EXFILTRATION, "T1048", "Exfiltration Over Web Service"),
        ],
    },
    "bec-compromise": {
        "name": "Business Email Compromise (BEC)",
        "description": "Executive mailbox takeover targeting financial transactions",
        "stages": [
            (S.INITIAL_ACCESS, "T1566.002", "Spearphishing Link (Email Account Compromise)"),
            (S.EXECUTION, "T1059.001", "PowerShell for Email Access"),
            (S.PERSISTENCE, "T1078", "Valid Accounts (Compromised Email)"),
            (S.COLLECTION, "T1114", "Email Collection"),
            (S.COLLECTION, "T1539", "Steal Web Session Cookie"),
            (S.DISCOVERY, "T1087", "Account Discovery"),
            (S.COLLECTION, "T1005", "Data from Local System"),
            (S.EXFILTRATION, "T1048", "Exfiltration Over Web Service"),
            (S.IMPACT, "T1498", "Network Denial of Service"),
        ],
    },
    "phishing-malware-dropper": {
        "name": "Phishing with Malware Dropper",
        "description": "Multi-stage phishing attack delivering malware through attachments and links",
        "stages": [
            (S.INITIAL_ACCESS, "T1566.001", "Spearphishing Attachment"),
            (S.EXECUTION, "T1204.002", "User Execution (Malicious File)"),
            (S.EXECUTION, "T1059.001", "PowerShell Execution"),
            (S.DEFENSE_EVASION, "T1027", "Obfuscated Files or Information"),
            (S.PERSISTENCE, "T1547.001", "Registry Run Keys"),
            (S.COMMAND_AND_CONTROL, "T1071.001", "Web Protocols C2"),
            (S.COLLECTION, "T1005", "Data from Local System"),
            (S.EXFILTRATION, "T1048", "Exfiltration Over HTTP"),
        ],
    },
    "insider-sabotage": {
        "name": "Insider Sabotage",
        "description": "Malicious insider performing destructive actions",
        "stages": [
            (S.INITIAL_ACCESS, "T1078", "Valid Accounts (Insider Access)"),
            (S.EXECUTION, "T1059.001", "PowerShell for System Manipulation"),
            (S.PRIVILEGE_ESCALATION, "T1078", "Valid Accounts (Privileged)"),
            (S.DEFENSE_EVASION, "T1070.004", "File Deletion"),
            (S.DISCOVERY, "T1083", "File and Directory Discovery"),
            (S.DISCOVERY, "T1018", "Remote System Discovery"),
            (S.COLLECTION, "T1005", "Data from Local System"),
            (S.IMPACT, "T1489", "Service Stop"),
            (S.IMPACT, "T1491", "Defacement"),
        ],
    },
    "cloud-misconfiguration": {
        "name": "Cloud Misconfiguration Breach",
        "description": "Attack exploiting exposed cloud storage and services",
        "stages": [
            (S.INITIAL_ACCESS, "T1078", "Valid Accounts (Cloud Account)"),
            (S.DISCOVERY, "T1083", "Cloud Storage Discovery"),
            (S.COLLECTION, "T1530", "Data from Cloud Storage"),
            (S.DISCOVERY, "T1526", "Cloud Service Discovery"),
            (S.COLLECTION, "T1005", "Data from Local System"),
            (S.EXFILTRATION, "T1048", "Exfiltration Over Web Service"),
            (S.IMPACT, "T1498", "Cloud Service Denial"),
        ],
    },
    "supply-chain-compromise": {
        "name": "Supply Chain Compromise",
        "description": "Attack through a trojanized vendor software update",
        "stages": [
            (S.INITIAL_ACCESS, "T1195", "Supply Chain Compromise"),
            (S.EXECUTION, "T1204.002", "User Execution (Compromised Software)"),
            (S.PERSISTENCE, "T1547.001", "Registry Run Keys"),
            (S.DEFENSE_EVASION, "T1070.004", "File Deletion"),
            (S.DISCOVERY, "T1083", "File and Directory Discovery"),
            (S.COLLECTION, "T1005", "Data from Local System"),
            (S.COMMAND_AND_CONTROL, "T1071.001", "Web Protocols C2"),
            (S.EXFILTRATION, "T1048", "Exfiltration Over HTTP"),
        ],
    },
}

NARRATIVES: Dict[str, Dict[str, str]] = {
    "apt29-cozy-bear": {
        "background": "You are a SOC analyst at a mid-sized technology company. Threat intelligence has flagged APT29 activity in your industry and the network has shown intermittent anomalies for two days.",
        "incident": "A spearphishing attachment opened by a senior executive ran PowerShell, established persistence and started harvesting credentials. The attacker has spent two days on reconnaissance, lateral movement and data collection.",
        "your_role": "Hunt through the logs for every stage of the campaign: the infection vector, compromised hosts and accounts, and the IOCs (IPs, domains, hashes, PIDs) mapped to MITRE ATT&CK.",
    },
    "ransomware-lockbit": {
        "background": "The SOC received alerts about suspicious outbound connections and mass file modifications consistent with a LockBit deployment.",
        "incident": "A phishing document dropped a loader that persisted, discovered the network, moved laterally and started encrypting files.",
        "your_role": "Scope the compromise quickly: the infection point, affected systems, C2 and exfiltration endpoints, file hashes and the full timeline.",
    },
    "insider-threat": {
        "background": "DLP flagged unusual access patterns from an employee account touching large volumes of sensitive files outside business hours.",
        "incident": "An employee with legitimate access has been collecting company data and transferring it to external cloud storage.",
        "your_role": "Identify the account, what it accessed, how the data left the network and the external services involved.",
    },
    "bec-compromise": {
        "background": "Finance reported wire transfer requests from the CEO's mailbox with unusual wording.",
        "incident": "The executive account was compromised through a spearphishing link. The attacker has been reading mail and collecting financial data.",
        "your_role": "Determine how the mailbox was compromised, what was collected, and the IPs, domains and session artifacts the attacker used.",
    },
    "phishing-malware-dropper": {
        "background": "Several users reported suspicious emails with attachments and multiple hosts show malicious PowerShell activity.",
        "incident": "A multi-stage dropper downloaded additional payloads, established persistence and began collecting data.",
        "your_role": "Trace the dropper execution chain, find infected systems and extract the malware IOCs (hashes, C2 servers, file paths).",
    },
    "insider-sabotage": {
        "background": "Critical systems suffered unexpected outages and logs show suspicious activity from a privileged account.",
        "incident": "A privileged insider deleted files, stopped services and tried to cover their tracks.",
        "your_role": "Identify the account, the scope of destructive actions and the timeline of malicious activity.",
    },
    "cloud-misconfiguration": {
        "background": "Monitoring detected unauthorized access to cloud storage buckets that may have been misconfigured.",
        "incident": "An attacker used exposed credentials to enumerate cloud services and pull data from storage.",
        "your_role": "Identify the misconfigured resources, what data was accessed and the infrastructure used to exfiltrate it.",
    },
    "supply-chain-compromise": {
        "background": "A vendor software update was recently deployed and several systems now show signs of compromise.",
        "incident": "The update was trojanized before distribution. Once installed it persisted, collected data and beaconed out.",
        "your_role": "Identify the compromised package, affected systems, the payload execution chain and its C2 and exfiltration IOCs.",
    },
}

LEARNING_OBJECTIVES: Dict[str, List[str]] = {
    "apt29-cozy-bear": [
        "Understand APT-style multi-day attack campaigns",
        "Identify credential dumping techniques (T1003) in Windows event logs",
        "Correlate network and host logs to track lateral movement",
        "Map complex attack chains to MITRE ATT&CK",
    ],
    "ransomware-lockbit": [
        "Understand ransomware deployment kill chains",
        "Detect persistence mechanisms (registry keys, scheduled tasks)",
        "Track lateral movement indicators (SMB, T1021.002)",
        "Recognize file encryption activities (T1486)",
    ],
    "insider-threat": [
        "Identify anomalous user behavior patterns",
        "Recognize legitimate account abuse (T1078)",
        "Map data exfiltration techniques (T1048)",
    ],
    "bec-compromise": [
        "Identify email account compromise indicators",
        "Track email collection and session hijacking (T1114, T1539)",
        "Recognize spearphishing link techniques (T1566.002)",
    ],
    "phishing-malware-dropper": [
        "Identify malware dropper execution chains",
        "Recognize obfuscation techniques (T1027)",
        "Extract malware IOCs from logs",
    ],
    "insider-sabotage": [
        "Identify destructive system actions",
        "Track privilege escalation and abuse",
        "Recognize service manipulation (T1489, T1491)",
    ],
    "cloud-misconfiguration": [
        "Identify exposed cloud resources",
        "Track cloud storage access patterns",
        "Recognize cloud service discovery techniques (T1526)",
    ],
    "supply-chain-compromise": [
        "Identify compromised software indicators",
        "Track supply chain compromise techniques (T1195)",
        "Recognize vendor software abuse patterns",
    ],
}


def get_template(story_type: str) -> Dict[str, Any]:
    template = ATTACK_CHAIN_TEMPLATES.get(story_type)
    if template is None:
        raise UnknownScenarioError(story_type)
    return template


def difficulty_for(stage_count: int) -> Difficulty:
    """Difficulty depends only on how many stages the chain has."""
    if stage_count <= 3:
        return Difficulty.BEGINNER
    if stage_count <= 5:
        return Difficulty.INTERMEDIATE
    return Difficulty.ADVANCED


def infection_vector_for(story_type: str) -> str:
    if "insider" in story_type:
        return "valid-accounts"
    if story_type.startswith("supply-chain"):
        return "supply-chain"
    return "phishing"


def list_templates() -> List[Dict[str, Any]]:
    """Catalog of available scenario templates."""
    return [
        {
            "story_type": key,
            "name": template["name"],
            "description": template["description"],
            "stage_count": len(template["stages"]),
            "difficulty": difficulty_for(len(template["stages"])).value,
            "techniques": [technique for _, technique, _ in template["stages"]],
        }
        for key, template in ATTACK_CHAIN_TEMPLATES.items()
    ]


def generate_attack_chain(
    story_type: str,
    ctx: SessionContext,
    start_time: Optional[datetime] = None,
    stages: Optional[int] = None,
    scenario_id: Optional[str] = None,
) -> AttackChain:
    """Lay the template's stages out on a timeline.

    The first stage sits exactly at ``start_time``; every later stage follows
    the previous one by a uniform 2-10 minute delay.
    """
    template = get_template(story_type)
    steps = template["stages"][:stages] if stages else template["stages"]
    start = start_time or ctx.clock.now()
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    scenario_id = scenario_id or ctx.new_id("scenario")

    chain_stages: List[AttackChainStage] = []
    timestamp = start
    for index, (stage, technique_id, name) in enumerate(steps):
        if index > 0:
            delay = ctx.rng.uniform(MIN_STAGE_DELAY_MINUTES, MAX_STAGE_DELAY_MINUTES)
            timestamp = timestamp + timedelta(minutes=delay)
        chain_stages.append(AttackChainStage(
            stage=stage,
            technique_id=technique_id,
            technique_name=name,
            timestamp=timestamp,
            description=f"Executed {name}",
        ))

    return AttackChain(
        id=ctx.new_id("chain"),
        scenario_id=scenario_id,
        session_id=ctx.session_id,
        name=template["name"],
        description=template["description"],
        stages=chain_stages,
        start_time=start,
    )


def generate_scenario_story(
    story_type: str,
    ctx: SessionContext,
    start_time: Optional[datetime] = None,
    stages: Optional[int] = None,
) -> ScenarioStory:
    """Build a full scenario story (chain, timeline, narrative) for a template."""
    template = get_template(story_type)
    scenario_id = ctx.new_id("scenario")
    chain = generate_attack_chain(story_type, ctx, start_time=start_time, stages=stages, scenario_id=scenario_id)

    timeline: List[TimelineEvent] = []
    for index, chain_stage in enumerate(chain.stages):
        visible = index == 0 or ctx.rng.random() < VISIBILITY_PROBABILITY
        timeline.append(TimelineEvent(
            timestamp=chain_stage.timestamp,
            stage=chain_stage.stage,
            description=f"{chain_stage.technique_name} executed",
            visible_to_user=visible,
            detection_triggered=ctx.rng.random() < DETECTION_PROBABILITY,
        ))

    narrative = NARRATIVES.get(story_type) or {
        "background": f"You are a SOC analyst investigating a security incident. {template['description']}",
        "incident": f"A security incident has been detected. {template['description']}",
        "your_role": "Investigate this incident and identify all malicious activity. Map findings to MITRE ATT&CK techniques and document your investigation.",
    }
    objectives = LEARNING_OBJECTIVES.get(story_type) or [
        f"Understand {template['name']} attack flow",
        "Identify indicators across multiple MITRE ATT&CK stages",
        "Correlate events from different log sources",
        "Track attack progression through timeline analysis",
    ]

    story = ScenarioStory(
        id=scenario_id,
        story_type=story_type,
        name=template["name"],
        description=template["description"],
        initial_infection_vector=infection_vector_for(story_type),
        attack_chain=chain,
        timeline=timeline,
        learning_objectives=list(objectives),
        difficulty=difficulty_for(len(chain.stages)),
        narrative=Narrative(**narrative),
    )
    logger.info(f"[CHAINS] Generated '{story_type}' with {len(chain.stages)} stages ({story.difficulty.value})")
    return story


def generate_multiple_scenarios(
    count: int,
    ctx: SessionContext,
    story_types: Optional[List[str]] = None,
    parallel: bool = False,
) -> List[ScenarioStory]:
    """Generate several stories, all at one instant (parallel) or an hour apart."""
    choices = story_types or list(ATTACK_CHAIN_TEMPLATES)
    for story_type in choices:
        get_template(story_type)

    base_time = ctx.clock.now()
    stories: List[ScenarioStory] = []
    for i in range(count):
        story_type = ctx.rng.choice(choices)
        start = base_time if parallel else base_time + timedelta(hours=i)
        stories.append(generate_scenario_story(story_type, ctx, start_time=start))
    return stories
