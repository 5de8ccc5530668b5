"""Investigation session routes."""
import logging
from fastapi import APIRouter, HTTPException, status
from typing import Any, Dict, List

from soctrainer.errors import ScenarioConfigError, UnknownScenarioError
from soctrainer.models import InvestigationSession, ScenarioConfig
from soctrainer.services.context import SessionContext
from soctrainer.services.simulation import generate_scenario
from soctrainer.services.timer import start_sla_timer, stop_sla_timer
from soctrainer.store import add_session, get_session, list_session_ids, remove_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def get_session_or_404(session_id: str) -> InvestigationSession:
    session = get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(config: ScenarioConfig) -> Dict[str, Any]:
    """Generate a new investigation session and start its SLA timer."""
    ctx = SessionContext(seed=config.seed)
    try:
        session = generate_scenario(config, ctx)
    except UnknownScenarioError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ScenarioConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))

    add_session(session, ctx)
    start_sla_timer(session, ctx.clock)
    logger.info(f"[SESSIONS] Created session {session.session_id} ({config.story_type})")
    return session.trainee_view()


@router.get("")
async def list_sessions() -> List[str]:
    """List active session ids."""
    return list_session_ids()


@router.get("/{session_id}")
async def get_session_view(session_id: str) -> Dict[str, Any]:
    """Trainee view of a session (no grading fields)."""
    return get_session_or_404(session_id).trainee_view()


@router.delete("/{session_id}")
async def delete_session(session_id: str) -> Dict[str, str]:
    """Discard a session and stop its timer."""
    get_session_or_404(session_id)
    stop_sla_timer(session_id)
    remove_session(session_id)
    logger.info(f"[SESSIONS] Deleted session {session_id}")
    return {"status": "deleted", "session_id": session_id}
