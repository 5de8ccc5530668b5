"""In-memory session store (sessions live only as long as the process)."""
from typing import Dict, List, Optional, Tuple

from soctrainer.models import InvestigationSession
from soctrainer.services.context import SessionContext

# session_id -> (session, its generation context)
_sessions: Dict[str, Tuple[InvestigationSession, SessionContext]] = {}


def add_session(session: InvestigationSession, ctx: SessionContext):
    _sessions[session.session_id] = (session, ctx)


def get_session(session_id: str) -> Optional[InvestigationSession]:
    entry = _sessions.get(session_id)
    return entry[0] if entry else None


def get_context(session_id: str) -> Optional[SessionContext]:
    entry = _sessions.get(session_id)
    return entry[1] if entry else None


def remove_session(session_id: str) -> bool:
    return _sessions.pop(session_id, None) is not None


def list_session_ids() -> List[str]:
    return list(_sessions)


def clear_sessions():
    """Drop every session (used on shutdown and in tests)."""
    _sessions.clear()
