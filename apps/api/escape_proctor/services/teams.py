from sqlalchemy import func
from ..errors import TeamNotFound
from ..models import Team, Flag, COMPLETED
from .. import config

def get_team(db, team_id:str)->Team:
    team = db.query(Team).filter_by(team_id=team_id).first() if team_id else None
    if team is None: raise TeamNotFound(team_id)
    return team

def is_finished(team:Team)->bool:
    return team.status == COMPLETED or int(team.current_level or 1) > config.max_level()

def team_summary(team:Team)->dict:
    return {"teamId": team.team_id, "teamName": team.team_name, "currentLevel": team.current_level or 1,
            "score": team.score or 0, "displayScore": team.display_score, "penalty": team.penalty or 0,
            "tabSwitchCount": team.tab_switch_count or 0, "status": team.status, "batch": team.batch,
            "completed": is_finished(team), "totalExamTime": team.total_exam_time}

def integrity_listing(db)->list:
    """Per-team penalty totals for the admin view, worst offenders first."""
    counts = dict(db.query(Flag.team_id, func.count(Flag.id)).group_by(Flag.team_id).all())
    out = []
    for t in db.query(Team).all():
        row = team_summary(t); row["flagCount"] = counts.get(t.team_id, 0); out.append(row)
    out.sort(key=lambda r: (r["tabSwitchCount"], r["penalty"]), reverse=True)
    return out
