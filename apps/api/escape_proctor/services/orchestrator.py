"""
Session orchestrator: runs every time a level page loads or reloads.

Returns the team's authoritative level, applies overdue timeout advances and
any reconnect-gap penalty, then refreshes the heartbeat. Safe to call
repeatedly; each mutation is conditional on the state it was decided from.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import update, or_, case, null
from .. import config
from ..db import atomic, run_update
from ..errors import BatchNotAssigned
from ..models import Team, ACTIVE, COMPLETED, BLOCKED_STATUSES
from .adjudicator import apply_penalty, penalty_message, BROWSER_EXIT
from .teams import get_team, is_finished
from .timer import now_ms, ensure_timer_state, has_timed_out, advance_on_timeout, completion_values, canonical_duration

logger = logging.getLogger(__name__)

def iso(ms:float)->str:
    return datetime.fromtimestamp(ms/1000, tz=timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')

def _completed_response()->dict:
    return {"status": "completed", "message": "All levels completed!", "redirect": config.leaderboard_url()}

def finalize_completion(db, team:Team, now:float)->Team:
    """Mark a finished team completed; end time is stamped at most once."""
    if team.status == COMPLETED and team.exam_end_time is not None and team.level_started_at is None: return team
    with atomic(db, 'finalize_completion'):
        run_update(db, update(Team).where(Team.team_id == team.team_id).values(**completion_values(now)))
    db.refresh(team)
    logger.info("Team %s finalized, total exam time %s ms", team.team_id, team.total_exam_time)
    return team

def _in_grace(team:Team, now:float)->bool:
    return team.transition_grace_until is not None and team.transition_grace_until > now

def _reconnect_gap_penalty(db, team:Team, now:float)->Optional[dict]:
    """Penalize an absence the client never reported, e.g. the app was closed and reopened."""
    if team.status != ACTIVE or team.last_heartbeat_at is None or _in_grace(team, now): return None
    inactive = max(0.0, now - team.last_heartbeat_at)
    already = team.last_violation_at is not None and team.last_violation_at > team.last_heartbeat_at
    if inactive < config.inactivity_ms() or already: return None
    penalized = apply_penalty(db, team.team_id, BROWSER_EXIT, now,
                              Team.last_heartbeat_at == team.last_heartbeat_at,
                              or_(Team.last_violation_at.is_(None), Team.last_violation_at <= Team.last_heartbeat_at),
                              or_(Team.transition_grace_until.is_(None), Team.transition_grace_until <= now),
                              details={'inactiveMs': int(inactive)})
    if penalized is None: return None
    return {"applied": True, "inactiveSeconds": int(inactive // 1000),
            "message": penalty_message('APP/BROWSER EXIT DETECTED', penalized)}

def start_session(db, team_id:str, now:Optional[float]=None)->dict:
    now = now_ms() if now is None else now
    team = get_team(db, team_id)
    if team.status in BLOCKED_STATUSES:
        return {"status": "blocked", "message": f"Team {team.status}"}
    # completed teams go to the leaderboard even before any batch check
    if is_finished(team):
        finalize_completion(db, team, now); return _completed_response()
    if team.batch is None: raise BatchNotAssigned(team_id)

    if not team.exam_start_time:
        with atomic(db, 'first_start'):
            run_update(db, update(Team).where(Team.team_id == team_id, Team.exam_start_time.is_(None))
                       .values(exam_start_time=now, status=ACTIVE, last_heartbeat_at=now))
        db.refresh(team)
        logger.info("Team %s started the exam (batch %s)", team_id, team.batch)

    ensure_timer_state(db, team, now)
    if has_timed_out(team, now):
        team = advance_on_timeout(db, team, now)
        if is_finished(team): return _completed_response()

    reconnect = _reconnect_gap_penalty(db, team, now)

    # an expired grace window is cleared; one opened meanwhile by a submit survives
    expired = case((Team.transition_grace_until <= now, null()), else_=Team.transition_grace_until)
    with atomic(db, 'start_heartbeat'):
        run_update(db, update(Team).where(Team.team_id == team_id)
                   .values(last_heartbeat_at=now, transition_grace_until=expired))
    db.refresh(team)

    return {"status": "active", "currentLevel": team.current_level, "teamId": team.team_id, "teamName": team.team_name,
            "score": team.score or 0, "penalty": team.penalty or 0, "batch": team.batch, "reconnectPenalty": reconnect}

def level_start_info(db, level:int, team_id:Optional[str]=None, now:Optional[float]=None)->dict:
    """Authoritative timer for the client countdown; applies any overdue advance first."""
    now = now_ms() if now is None else now
    if not team_id:
        return {"level": level, "duration": canonical_duration(level), "startTime": iso(now), "serverNow": int(now)}
    team = get_team(db, team_id)
    finished = {"level": config.max_level(), "completed": True, "duration": 0, "redirect": config.leaderboard_url(), "serverNow": int(now)}
    if is_finished(team):
        return dict(finished, startTime=iso(team.level_started_at or now))
    if team.status in BLOCKED_STATUSES:
        return {"level": team.current_level, "blocked": True, "duration": 0, "startTime": iso(now), "redirect": None, "serverNow": int(now)}
    if not team.exam_start_time:
        # only start_session starts the clock
        current = int(team.current_level or 1)
        return {"level": current, "duration": canonical_duration(current), "startTime": iso(now),
                "redirect": config.level_url(current) if current != level else None, "serverNow": int(now)}

    ensure_timer_state(db, team, now)
    if has_timed_out(team, now):
        team = advance_on_timeout(db, team, now)
        if is_finished(team): return dict(finished, startTime=iso(now))

    current = int(team.current_level)
    return {"level": current, "duration": canonical_duration(current), "startTime": iso(team.level_started_at or now),
            "redirect": config.level_url(current) if current != level else None, "serverNow": int(now)}
