"""Scenario orchestration: story, attack records, noise and alert queue for one session."""
import logging
from datetime import timedelta
from typing import Mapping, Optional

from soctrainer.models import (
    EvaluationResult,
    InvestigationSession,
    IOCTag,
    ScenarioConfig,
    ScoringMode,
)
from soctrainer.services.alerts import AlertGenerator, default_queue_config
from soctrainer.services.atomic import carry_forward_artifacts, execute_atomic_test
from soctrainer.services.chains import generate_scenario_story
from soctrainer.services.context import SessionContext
from soctrainer.services.evaluator import evaluate
from soctrainer.services.log_builders import MALICIOUS_DOMAINS, MALICIOUS_IPS
from soctrainer.services.noise import generate_background_noise

logger = logging.getLogger(__name__)

NOISE_MARGIN = timedelta(minutes=30)
ANALYST_NAMES = ["jsmith", "akhan", "mlopez", "tnguyen", "rpatel", "ebrown"]
SUPPORT_HOSTS = ["WIN-DC01", "WIN-FS01", "WIN-MAIL01"]


def generate_scenario(config: ScenarioConfig, ctx: Optional[SessionContext] = None) -> InvestigationSession:
    """Generate a complete investigation session from a scenario config.

    Raises UnknownScenarioError for an unknown template before any state is
    produced.
    """
    ctx = ctx or SessionContext(seed=config.seed)
    story = generate_scenario_story(config.story_type, ctx, start_time=config.start_time, stages=config.stages)
    chain = story.attack_chain
    rng = ctx.rng

    hostname = config.hostname or f"WIN-WS{rng.randint(1, 99):02d}"
    context = {
        "hostname": hostname,
        "username": config.username or f"CORP\\{rng.choice(ANALYST_NAMES)}",
        "source_ip": config.source_ip or f"10.0.1.{rng.randint(2, 254)}",
        "scenario_id": story.id,
        "c2_ip": rng.choice(MALICIOUS_IPS),
        "c2_domain": rng.choice(MALICIOUS_DOMAINS),
    }

    attack_events = []
    for chain_stage in chain.stages:
        context["timestamp"] = chain_stage.timestamp
        context["stage"] = chain_stage.stage
        execution = execute_atomic_test(chain_stage.technique_id, context, ctx)
        chain_stage.events = [e.id for e in execution.events]
        chain_stage.artifacts = execution.artifacts
        attack_events.extend(execution.events)
        context = carry_forward_artifacts(context, execution)
    chain.status = "completed"

    noise = generate_background_noise(
        config.noise_level,
        chain.stages[0].timestamp - NOISE_MARGIN,
        chain.stages[-1].timestamp + NOISE_MARGIN,
        ctx,
        hosts=[hostname] + SUPPORT_HOSTS,
        scenario_id=story.id,
    )
    events = sorted(attack_events + noise, key=lambda e: e.timestamp)

    queue_config = config.alert_queue or default_queue_config(story.difficulty)
    alerts = AlertGenerator(ctx).generate_alert_queue(queue_config, events)

    session = InvestigationSession(
        session_id=ctx.session_id,
        seed=ctx.seed,
        story=story,
        attack_chains=[chain],
        events=events,
        alerts=alerts,
        started_at=ctx.clock.now(),
    )
    logger.info(
        f"[SESSIONS] Session {session.session_id} ready: '{story.story_type}', "
        f"{len(attack_events)} attack + {len(noise)} noise events, {len(alerts)} alerts (seed={ctx.seed})"
    )
    return session


def finalize_investigation(
    session: InvestigationSession,
    user_tags: Mapping[str, IOCTag],
    time_taken_seconds: float = 0.0,
    mode: Optional[ScoringMode] = None,
) -> EvaluationResult:
    """Evaluate once and freeze the result on the session.

    Finalizing again returns the stored result unchanged.
    """
    if session.evaluation is not None:
        return session.evaluation
    result = evaluate(user_tags, session, mode=mode, time_taken_seconds=time_taken_seconds)
    session.evaluation = result
    session.status = "finalized"
    return result
