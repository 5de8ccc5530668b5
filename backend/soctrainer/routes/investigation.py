"""Finalize and evaluation routes."""
import logging
from fastapi import APIRouter, HTTPException

from soctrainer.models import EvaluationResult, FinalizeRequest
from soctrainer.routes.sessions import get_session_or_404
from soctrainer.services.simulation import finalize_investigation
from soctrainer.services.timer import stop_sla_timer, tick_alerts
from soctrainer.store import get_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["investigation"])


@router.post("/{session_id}/finalize")
async def finalize(session_id: str, request: FinalizeRequest) -> EvaluationResult:
    """Stop the SLA clock and score the trainee's IOC tags (once)."""
    session = get_session_or_404(session_id)
    if session.status == "running":
        stop_sla_timer(session_id)
        tick_alerts(session.alerts, get_context(session_id).clock.now())
    result = finalize_investigation(
        session,
        request.user_tags,
        time_taken_seconds=request.time_taken_seconds,
        mode=request.mode,
    )
    logger.info(f"[SESSIONS] Session {session_id} finalized with score {result.score}")
    return result


@router.get("/{session_id}/evaluation")
async def get_evaluation(session_id: str) -> EvaluationResult:
    """Stored evaluation of a finalized session."""
    session = get_session_or_404(session_id)
    if session.evaluation is None:
        raise HTTPException(status_code=404, detail="Session not finalized")
    return session.evaluation
