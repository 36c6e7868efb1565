from fastapi import FastAPI, HTTPException, Header, Request
from fastapi.responses import Response
from pathlib import Path
from typing import Optional
import os

app = FastAPI(title="Mock Tally Server", version="1.0.0")
# Support both local development and Docker
DATA_DIR = Path("/tally_stub") if os.path.exists("/tally_stub") else Path(__file__).resolve().parents[1] / "tally_stub"

@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/api/tally/tallydata")
async def get_tally_data(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    x_guid: Optional[str] = Header(default=None),
):
    if not authorization or authorization == "Bearer expired":
        raise HTTPException(status_code=401, detail="token expired")
    body = (await request.body()).decode("utf-8")
    if "<SQLREQUEST" not in body:
        raise HTTPException(status_code=400, detail="unsupported request")
    if "TCLRLedEntries" in body:
        file = DATA_DIR / "receivables_drilldown.xml"
        return Response(content=file.read_text(encoding="utf-8"), media_type="application/xml")
    file = DATA_DIR / f"receivables_{x_guid or 'default'}.xml"
    if not file.exists():
        file = DATA_DIR / "receivables_default.xml"
    return Response(content=file.read_text(encoding="utf-8"), media_type="application/xml")
