"""Level submission: credit score and advance exactly once per level."""
import logging
from typing import Optional
from .. import config
from ..db import atomic, run_update
from ..errors import LevelMismatch, TeamNotActive
from ..models import Team, BLOCKED_STATUSES, COMPLETED
from .teams import get_team, is_finished
from .timer import now_ms, advance_stmt

logger = logging.getLogger(__name__)

def _check_submittable(team:Team, level:int):
    if team.status in BLOCKED_STATUSES: raise TeamNotActive(team.team_id, team.status)
    if level != team.current_level: raise LevelMismatch(team.team_id, level, team.current_level)
    if is_finished(team): raise TeamNotActive(team.team_id, COMPLETED)

def _advance_with_grace(db, team:Team, level:int, now:float, score:int=0)->bool:
    """Advance off `level`, credit score and open the transition grace window in one UPDATE."""
    extra = {'last_heartbeat_at': now, 'transition_grace_until': now + config.transition_grace_ms()}
    if score: extra['score'] = Team.score + score
    with atomic(db, 'advance_level'):
        moved = run_update(db, advance_stmt(team.team_id, level, now, **extra))
    db.refresh(team)
    return bool(moved)

def _next_level_response(next_level:int)->dict:
    completed = next_level > config.max_level()
    return {"nextLevel": config.max_level() if completed else next_level, "completed": completed,
            "redirect": config.leaderboard_url() if completed else config.level_url(next_level)}

def submit_level(db, team_id:str, level:int, score:int, now:Optional[float]=None)->dict:
    now = now_ms() if now is None else now
    team = get_team(db, team_id)
    _check_submittable(team, level)
    if not _advance_with_grace(db, team, level, now, score):
        # lost a race with another submit or a timeout advance
        _check_submittable(team, level)
        raise LevelMismatch(team_id, level, team.current_level)
    logger.info("Team %s completed level %s with score %s, advancing to level %s", team_id, level, score, level + 1)
    return dict({"success": True, "levelScore": score}, **_next_level_response(level + 1))

def submit_sentinel(db, team_id:str, level:int, answer:str, now:Optional[float]=None)->dict:
    """Final coding level: the page only produces the sentinel token once its own checks pass."""
    now = now_ms() if now is None else now
    team = get_team(db, team_id)
    _check_submittable(team, level)
    if level != config.sentinel_level() or answer != config.sentinel_answer():
        return {"result": "incorrect", "message": "Answer not accepted"}
    bonus = config.sentinel_bonus()
    if not _advance_with_grace(db, team, level, now, bonus):
        _check_submittable(team, level)
        raise LevelMismatch(team_id, level, team.current_level)
    logger.info("Team %s passed sentinel level %s, bonus %s", team_id, level, bonus)
    return dict({"result": "correct", "levelScore": bonus}, **_next_level_response(level + 1))

def timeout_advance(db, team_id:str, level:int, now:Optional[float]=None)->dict:
    """Client countdown hit zero before the next poll; advance once, otherwise point at the server level."""
    now = now_ms() if now is None else now
    team = get_team(db, team_id)
    if team.status in BLOCKED_STATUSES: raise TeamNotActive(team_id, team.status)
    current = int(team.current_level or 1)
    if is_finished(team):
        return {"success": True, "completed": True, "nextLevel": config.max_level(), "redirect": config.leaderboard_url()}
    if current > level:
        return {"success": True, "alreadyAdvanced": True, "nextLevel": current, "redirect": config.level_url(current)}
    if current < level:
        return {"success": True, "nextLevel": current, "redirect": config.level_url(current)}
    if not _advance_with_grace(db, team, current, now):
        return dict({"success": True, "alreadyAdvanced": True}, **_next_level_response(team.current_level))
    logger.info("Team %s timeout-advanced from level %s", team_id, current)
    return dict({"success": True, "timeoutAdvanced": True}, **_next_level_response(current + 1))
