import logging, math
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from .db import engine, SessionLocal, Base
from .errors import TeamNotFound, LevelMismatch, TeamNotActive, BatchNotAssigned, PersistenceFailure
from .config import get_config, leaderboard_url
from .logging_config import setup_logging
from .services.heartbeat import record_heartbeat
from .services.adjudicator import adjudicate
from .services.orchestrator import start_session, level_start_info
from .services.submission import submit_level, submit_sentinel, timeout_advance
from .services.teams import get_team, team_summary, integrity_listing
from .services.reports import team_flags, flags_csv, flags_pdf

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Escape Room Proctor API")
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

Base.metadata.create_all(bind=engine)

class InvalidRequest(Exception):
    pass

def _exam_ok(request: Request):
    cfg = get_config().get('auth',{})
    tok = request.headers.get('x-exam') or request.query_params.get('token')
    return bool(tok and tok == cfg.get('exam_token'))
def _admin_ok(request: Request):
    cfg = get_config().get('auth',{})
    pwd = request.headers.get('x-admin') or request.query_params.get('admin')
    return bool(pwd and pwd == cfg.get('admin_password'))
def _unauthorized(): return JSONResponse({'error':'unauthorized'}, status_code=401)

def _team_id(payload: dict, key: str = "team_id") -> str:
    tid = str(payload.get(key) or "").strip()
    if not tid: raise InvalidRequest(f"{key} required")
    return tid
def _int(payload: dict, key: str) -> int:
    val = payload.get(key)
    if isinstance(val, bool) or not isinstance(val, (int, float, str)): raise InvalidRequest(f"{key} must be an integer")
    if isinstance(val, float) and not (math.isfinite(val) and val.is_integer()): raise InvalidRequest(f"{key} must be an integer")
    try: return int(val)
    except ValueError: raise InvalidRequest(f"{key} must be an integer") from None
def _hidden_ms(payload: dict) -> Optional[float]:
    val = payload.get("hiddenMs")
    if val is None: return None
    try: ms = float(val)
    except (TypeError, ValueError): raise InvalidRequest("hiddenMs must be a number") from None
    if isinstance(val, bool) or not math.isfinite(ms): raise InvalidRequest("hiddenMs must be a finite number")
    return ms

@app.exception_handler(InvalidRequest)
async def _invalid(request: Request, exc: InvalidRequest):
    return JSONResponse({"error": str(exc)}, status_code=400)
@app.exception_handler(TeamNotFound)
async def _not_found(request: Request, exc: TeamNotFound):
    return JSONResponse({"ok": False, "error": "Team not found"}, status_code=404)
@app.exception_handler(LevelMismatch)
async def _mismatch(request: Request, exc: LevelMismatch):
    return JSONResponse({"error": "Level mismatch", "expectedLevel": exc.expected_level})
@app.exception_handler(TeamNotActive)
async def _not_active(request: Request, exc: TeamNotActive):
    return JSONResponse({"error": "Team not active", "status": exc.status}, status_code=403)
@app.exception_handler(BatchNotAssigned)
async def _waiting(request: Request, exc: BatchNotAssigned):
    return JSONResponse({"status": "waiting", "message": "Your batch hasn't started yet. Please wait for admin announcement.",
                         "redirect": leaderboard_url()})
@app.exception_handler(PersistenceFailure)
async def _persistence(request: Request, exc: PersistenceFailure):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": "persistence_failure", "detail": str(exc)}, status_code=500)

@app.get("/")
def root(): return {"ok":True}

# Session lifecycle
@app.post("/api/escape/start")
def start(payload: dict, request: Request):
    if not _exam_ok(request): return _unauthorized()
    team_id = _team_id(payload)
    db = SessionLocal()
    try: return start_session(db, team_id)
    finally: db.close()

@app.get("/api/escape/level/{level}/start")
def level_start(level: int, request: Request, team_id: str = ""):
    if not _exam_ok(request): return _unauthorized()
    db = SessionLocal()
    try: return level_start_info(db, level, team_id.strip() or None)
    finally: db.close()

@app.post("/api/escape/timeout-advance")
def timeout_advance_route(payload: dict, request: Request):
    if not _exam_ok(request): return _unauthorized()
    team_id = _team_id(payload); level = _int(payload, "level")
    db = SessionLocal()
    try: return timeout_advance(db, team_id, level)
    finally: db.close()

# Anti-cheat
@app.post("/api/escape/heartbeat")
def heartbeat(payload: dict, request: Request):
    if not _exam_ok(request): return _unauthorized()
    team_id = _team_id(payload)
    db = SessionLocal()
    try: record_heartbeat(db, team_id); return {"ok": True}
    finally: db.close()

@app.post("/api/escape/tab-switch")
def tab_switch(payload: dict, request: Request):
    if not _exam_ok(request): return _unauthorized()
    team_id = _team_id(payload); hidden = _hidden_ms(payload)
    db = SessionLocal()
    try: return adjudicate(db, team_id, hidden)
    finally: db.close()

# Submissions
@app.post("/api/escape/submit")
def submit(payload: dict, request: Request):
    if not _exam_ok(request): return _unauthorized()
    team_id = _team_id(payload); level = _int(payload, "level"); score = _int(payload, "score")
    if score < 0: raise InvalidRequest("score must not be negative")
    db = SessionLocal()
    try: return submit_level(db, team_id, level, score)
    finally: db.close()

@app.post("/api/escape/levels/{level}/submit")
def submit_level_answer(level: int, payload: dict, request: Request):
    if not _exam_ok(request): return _unauthorized()
    team_id = _team_id(payload, "teamId")
    db = SessionLocal()
    try: return submit_sentinel(db, team_id, level, str(payload.get("answer") or ""))
    finally: db.close()

# Team info / reports
@app.get("/api/escape/team/{team_id}")
def team_info(team_id: str, request: Request):
    if not _exam_ok(request) and not _admin_ok(request): return _unauthorized()
    db = SessionLocal()
    try: return team_summary(get_team(db, team_id))
    finally: db.close()

@app.get("/api/escape/report/{team_id}")
def report(team_id: str, request: Request):
    if not _admin_ok(request): return _unauthorized()
    db = SessionLocal()
    try:
        team = team_summary(get_team(db, team_id))
        return {"team": team, "flags": team_flags(db, team_id)}
    finally: db.close()

@app.get("/api/escape/report/{team_id}/csv")
def report_csv(team_id: str, request: Request):
    if not _admin_ok(request): return _unauthorized()
    db = SessionLocal()
    try:
        get_team(db, team_id)
        return Response(content=flags_csv(team_flags(db, team_id)), media_type='text/csv', headers={'Content-Disposition': f'attachment; filename="{team_id}.csv"'})
    finally: db.close()

@app.get("/api/escape/report/{team_id}/pdf")
def report_pdf(team_id: str, request: Request):
    if not _admin_ok(request): return _unauthorized()
    db = SessionLocal()
    try:
        team = team_summary(get_team(db, team_id))
        return Response(content=flags_pdf(team, team_flags(db, team_id)), media_type='application/pdf', headers={'Content-Disposition': f'attachment; filename="{team_id}.pdf"'})
    finally: db.close()

@app.get("/api/admin/teams")
def admin_teams(request: Request):
    if not _admin_ok(request): return _unauthorized()
    db = SessionLocal()
    try: return integrity_listing(db)
    finally: db.close()
