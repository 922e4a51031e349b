class EscapeError(Exception):
    """Base class for errors the proctoring core raises to the API layer."""

class TeamNotFound(EscapeError):
    def __init__(self, team_id:str):
        super().__init__(f"Team not found: {team_id}"); self.team_id=team_id

class LevelMismatch(EscapeError):
    """Submitted level is not the team's current level; the client should resync, not retry."""
    def __init__(self, team_id:str, submitted:int, expected_level:int):
        super().__init__(f"Team {team_id} submitted level {submitted}, expected {expected_level}")
        self.team_id=team_id; self.submitted=submitted; self.expected_level=expected_level

class TeamNotActive(EscapeError):
    def __init__(self, team_id:str, status:str):
        super().__init__(f"Team {team_id} is {status}"); self.team_id=team_id; self.status=status

class BatchNotAssigned(EscapeError):
    def __init__(self, team_id:str):
        super().__init__(f"No batch released for team {team_id}"); self.team_id=team_id

class PersistenceFailure(EscapeError):
    """Storage error while mutating timer or score state. Never retried silently."""
