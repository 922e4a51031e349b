import io, csv, json
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas
from ..models import Flag

def team_flags(db, team_id:str)->list:
    flags = db.query(Flag).filter_by(team_id=team_id).order_by(Flag.ts.asc(), Flag.id.asc()).all()
    return [{"ts": f.ts, "severity": f.severity, "kind": f.kind, "details": f.details} for f in flags]

def flags_csv(flags:list)->bytes:
    buf = io.StringIO(); w = csv.writer(buf); w.writerow(['ts','severity','kind','details'])
    for f in flags: w.writerow([int(f["ts"]), f["severity"], f["kind"], json.dumps(f["details"] or {})])
    return buf.getvalue().encode('utf-8')

def flags_pdf(team:dict, flags:list)->bytes:
    buf = io.BytesIO(); c = canvas.Canvas(buf, pagesize=letter); width, height = letter; y = height - 50
    c.setFont("Helvetica-Bold", 14); c.drawString(50, y, f"Escape Room Integrity Report: {team['teamId']}"); y -= 20
    c.setFont("Helvetica", 10)
    c.drawString(50, y, f"Team: {team['teamName']}  Status: {team['status']}  Level: {team['currentLevel']}"); y -= 14
    c.drawString(50, y, f"Score: {team['score']}  Penalty: {team['penalty']}  Switches: {team['tabSwitchCount']}"); y -= 20
    for f in flags:
        line = f"{int(f['ts'])}  [{f['severity'].upper()}]  {f['kind']}  {json.dumps(f['details'] or {})}"
        for chunk in [line[i:i+95] for i in range(0, len(line), 95)]:
            if y < 60: c.showPage(); y = height - 50; c.setFont("Helvetica", 10)
            c.drawString(50, y, chunk); y -= 12
    c.showPage(); c.save(); return buf.getvalue()
