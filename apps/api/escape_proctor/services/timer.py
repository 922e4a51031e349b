"""
Level timer engine.

The server owns each team's level clock. Expiry is evaluated lazily whenever a
request touches the team; there is no background sweep.
"""
import time, logging
from typing import NamedTuple, Optional
from sqlalchemy import update, func, or_
from .. import config
from ..db import atomic, run_update
from ..models import Team, ACTIVE, COMPLETED, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

def now_ms()->float: return time.time()*1000

def canonical_duration(level:int)->int:
    return config.level_durations().get(int(level), config.default_duration_sec())

class TimerState(NamedTuple):
    changed: bool
    level: int
    duration: int

def _stale_clause(level:int, expected:int):
    return or_(Team.level_number.is_(None), Team.level_number != level,
               Team.level_started_at.is_(None), Team.level_started_at == 0,
               Team.level_duration_sec.is_(None), Team.level_duration_sec != expected)

def ensure_timer_state(db, team:Team, now:Optional[float]=None)->TimerState:
    """Reset the level clock when the level changed or the stored duration went stale.

    The reset only lands while the team is still on the level it was read at and
    the stored timer is still stale, so a concurrent advance keeps its own clock.
    """
    now = now_ms() if now is None else now
    level = int(team.current_level or 1); expected = canonical_duration(level)
    stale = (int(team.level_number or 0) != level or not team.level_started_at or int(team.level_duration_sec or 0) != expected)
    if not stale: return TimerState(False, level, expected)
    with atomic(db, 'timer_correction'):
        changed = run_update(db, update(Team)
                             .where(Team.team_id == team.team_id, Team.current_level == level,
                                    Team.status.notin_(TERMINAL_STATUSES), _stale_clause(level, expected))
                             .values(level_number=level, level_started_at=now, level_duration_sec=expected))
    db.refresh(team)
    level = int(team.current_level or 1)
    return TimerState(bool(changed), level, canonical_duration(level))

def has_timed_out(team:Team, now:Optional[float]=None)->bool:
    if not team.level_started_at or not team.level_duration_sec: return False
    now = now_ms() if now is None else now
    return (now - team.level_started_at) >= team.level_duration_sec*1000

def completion_values(now:float)->dict:
    """Column values that finalize a record; end time and total are stamped only once."""
    end = func.coalesce(Team.exam_end_time, now)
    return {'status': COMPLETED, 'exam_end_time': end,
            'total_exam_time': func.coalesce(Team.total_exam_time, end - Team.exam_start_time),
            'level_number': None, 'level_started_at': None, 'level_duration_sec': None}

def advance_values(next_level:int, now:float)->dict:
    values = {'current_level': next_level}
    if next_level > config.max_level(): values.update(completion_values(now))
    else: values.update(status=ACTIVE, level_number=next_level, level_started_at=now, level_duration_sec=canonical_duration(next_level))
    return values

def advance_stmt(team_id:str, from_level:int, now:float, **extra):
    """UPDATE moving a team off `from_level`; matches nothing if another request already did."""
    values = advance_values(from_level + 1, now); values.update(extra)
    return (update(Team)
            .where(Team.team_id == team_id, Team.current_level == from_level, Team.status.notin_(TERMINAL_STATUSES))
            .values(**values))

def advance_on_timeout(db, team:Team, now:Optional[float]=None)->Team:
    now = now_ms() if now is None else now
    level = int(team.current_level or 1)
    with atomic(db, 'advance_on_timeout'):
        moved = run_update(db, advance_stmt(team.team_id, level, now))
    db.refresh(team)
    if moved:
        logger.info("Team %s timed out on level %s, now at level %s (%s)", team.team_id, level, team.current_level, team.status)
    return team
