"""Presence heartbeat receiver: evidence collection only, no penalty logic."""
from typing import Optional
from sqlalchemy import update
from ..db import atomic, run_update
from ..errors import TeamNotFound
from ..models import Team
from .timer import now_ms

def record_heartbeat(db, team_id:str, now:Optional[float]=None)->float:
    now = now_ms() if now is None else now
    with atomic(db, 'record_heartbeat'):
        matched = run_update(db, update(Team).where(Team.team_id == team_id).values(last_heartbeat_at=now))
    if not matched: raise TeamNotFound(team_id)
    return now
