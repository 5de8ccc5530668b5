"""Alert queue and triage routes."""
from fastapi import APIRouter, HTTPException
from typing import Any, Dict, List

from soctrainer.errors import InvalidTransitionError
from soctrainer.models import TriageRequest
from soctrainer.routes.sessions import get_session_or_404
from soctrainer.services.alerts import apply_triage_action
from soctrainer.services.timer import tick_alerts
from soctrainer.store import get_context

router = APIRouter(prefix="/api/sessions", tags=["alerts"])


@router.get("/{session_id}/alerts")
async def list_alerts(session_id: str) -> List[Dict[str, Any]]:
    """Alert queue in priority order, with fresh SLA figures."""
    session = get_session_or_404(session_id)
    if session.status == "running":
        tick_alerts(session.alerts, get_context(session_id).clock.now())
    return [alert.trainee_view() for alert in session.alerts]


@router.post("/{session_id}/alerts/{alert_id}/status")
async def triage_alert(session_id: str, alert_id: str, request: TriageRequest) -> Dict[str, Any]:
    """Move an alert to a new triage status."""
    session = get_session_or_404(session_id)
    if session.status != "running":
        raise HTTPException(status_code=409, detail="Session already finalized")

    alert = next((a for a in session.alerts if a.id == alert_id), None)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")

    try:
        apply_triage_action(alert, request.status, get_context(session_id).clock.now())
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return alert.trainee_view()
