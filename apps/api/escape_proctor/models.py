from sqlalchemy import Column, Integer, String, Float, JSON
from .db import Base

NOT_STARTED, ACTIVE, COMPLETED, ELIMINATED, DISQUALIFIED = 'not_started', 'active', 'completed', 'eliminated', 'disqualified'
BLOCKED_STATUSES = (ELIMINATED, DISQUALIFIED)
TERMINAL_STATUSES = (COMPLETED, ELIMINATED, DISQUALIFIED)

class Team(Base):
    __tablename__='teams'
    id=Column(Integer, primary_key=True); team_id=Column(String, unique=True, index=True, nullable=False)
    team_name=Column(String, default=''); batch=Column(Integer, nullable=True)
    status=Column(String, default=NOT_STARTED, nullable=False); current_level=Column(Integer, default=1, nullable=False)
    score=Column(Integer, default=0, nullable=False); penalty=Column(Integer, default=0, nullable=False)
    tab_switch_count=Column(Integer, default=0, nullable=False)
    # level timer, epoch ms
    level_number=Column(Integer, nullable=True); level_started_at=Column(Float, nullable=True); level_duration_sec=Column(Integer, nullable=True)
    # anti-cheat evidence, epoch ms
    last_heartbeat_at=Column(Float, nullable=True); last_violation_at=Column(Float, nullable=True); transition_grace_until=Column(Float, nullable=True)
    exam_start_time=Column(Float, nullable=True); exam_end_time=Column(Float, nullable=True); total_exam_time=Column(Float, nullable=True)

    # penalties are debited from score as they happen; penalty is the audit total
    @property
    def display_score(self): return max(0, self.score or 0)

class Flag(Base):
    __tablename__='flags'
    id=Column(Integer, primary_key=True); team_id=Column(String, index=True); ts=Column(Float)
    severity=Column(String); kind=Column(String); details=Column(JSON)
