"""
Tab-switch adjudication.

Clients report how long the page was hidden; the report is advisory. Each
report is resolved to a penalty or an ignored outcome with a reason code.
Penalties are applied with one conditional UPDATE so duplicate reports racing
each other cannot both land.
"""
import logging
from typing import Optional
from sqlalchemy import update, or_
from .. import config
from ..db import atomic, run_update
from ..models import Team, Flag, TERMINAL_STATUSES
from .teams import get_team
from .timer import now_ms

logger = logging.getLogger(__name__)

PENALTY, IGNORED = 'penalty', 'ignored'
RAPID_CONSECUTIVE = 'rapid_consecutive_detection'
BRIEF_HIDDEN = 'brief_hidden_state'
LONG_HIDDEN = 'very_long_hidden_state_likely_system_sleep'
TEAM_NOT_ACTIVE = 'team_not_active'

# reason tags for the audit trail
VISIBILITY_TAB_SWITCH = 'VISIBILITY_TAB_SWITCH'
BROWSER_EXIT = 'BROWSER_EXIT_OR_RECENT_APPS'

def apply_penalty(db, team_id:str, reason:str, now:float, *conditions, details:Optional[dict]=None)->Optional[Team]:
    """Debit one violation if the team is not terminal and every extra condition holds at write time.

    Returns the updated team, or None when no row matched.
    """
    pts = config.penalty_points()
    stmt = (update(Team)
            .where(Team.team_id == team_id, Team.status.notin_(TERMINAL_STATUSES), *conditions)
            .values(score=Team.score - pts, penalty=Team.penalty + pts,
                    tab_switch_count=Team.tab_switch_count + 1, last_violation_at=now))
    with atomic(db, 'apply_penalty'):
        matched = run_update(db, stmt)
        if matched: db.add(Flag(team_id=team_id, ts=now, severity='warn', kind=reason.lower(), details=details or {}))
    if not matched: return None
    team = db.query(Team).filter_by(team_id=team_id).first()
    logger.warning("[%s] Team %s, count=%s, score=%s, penalty=%s", reason, team_id, team.tab_switch_count, team.score, team.penalty)
    return team

def penalty_message(headline:str, team:Team)->str:
    return (f"{headline}\n\nPenalty Applied: -{config.penalty_points()} marks\n"
            f"Total Tab/App Switches: {team.tab_switch_count}\nCurrent Score: {team.score or 0}")

def _rapid(now:float, last:float)->dict:
    return {'action': IGNORED, 'reason': RAPID_CONSECUTIVE, 'timeSinceLastMs': int(now - last)}

def _debounced(team:Team, now:float)->bool:
    return team.last_violation_at is not None and (now - team.last_violation_at) < config.debounce_ms()

def adjudicate(db, team_id:str, hidden_ms:Optional[float]=None, now:Optional[float]=None)->dict:
    now = now_ms() if now is None else now
    team = get_team(db, team_id)
    if team.status in TERMINAL_STATUSES:
        return {'action': IGNORED, 'reason': TEAM_NOT_ACTIVE, 'status': team.status}
    if _debounced(team, now): return _rapid(now, team.last_violation_at)
    if hidden_ms is not None:
        if hidden_ms < config.min_hidden_ms(): return {'action': IGNORED, 'reason': BRIEF_HIDDEN, 'hiddenMs': hidden_ms}
        if hidden_ms > config.max_hidden_ms(): return {'action': IGNORED, 'reason': LONG_HIDDEN, 'hiddenMs': hidden_ms}

    window_start = now - config.debounce_ms()
    team = apply_penalty(db, team_id, VISIBILITY_TAB_SWITCH, now,
                         or_(Team.last_violation_at.is_(None), Team.last_violation_at <= window_start),
                         details={'hiddenMs': hidden_ms})
    if team is None:
        # a concurrent report won the write; say why this one lost
        team = get_team(db, team_id)
        if team.status in TERMINAL_STATUSES:
            return {'action': IGNORED, 'reason': TEAM_NOT_ACTIVE, 'status': team.status}
        return _rapid(now, team.last_violation_at if team.last_violation_at is not None else now)

    return {'action': PENALTY, 'message': penalty_message('TAB/APP SWITCH DETECTED', team),
            'scoreDeducted': config.penalty_points(), 'penalty': team.penalty,
            'currentScore': team.score, 'tabSwitchCount': team.tab_switch_count}
