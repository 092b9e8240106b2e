"""
WALKTHROUGH
===========
This file defines a small web service (using FastAPI) that acts as a run task
for an infrastructure-as-code control plane. When a run reaches the pre-plan
stage the control plane POSTs a webhook to "/" and waits for a verdict:
  1) Verify the webhook signature (HMAC-SHA512 over the raw body, sent in
     X-TFC-Task-Signature) so we only act on requests from the control plane.
  2) Parse the JSON payload to learn which run is involved, where to download
     its configuration and where to report back.
  3) Put a job on a bounded queue and answer 200 right away. The control plane
     does not wait for the scan on this request.
  4) A background worker downloads the configuration tarball, renders a
     dependency graph with terraform + graphviz (best-effort), scans the files
     against the regex pattern file and PATCHes a passed/failed verdict to the
     run's callback URL.

The rendered graph is served at "/runs/{run_id}" and the verdict links to it.
There is also a "/health" endpoint for quick health checks.

Notes:
- "env var" (environment variable) = a setting provided from the outside,
  like the shared HMAC key. See config.py for the full list.
- If HMAC_KEY is not set, signature verification is DISABLED. That is only
  meant for local development and we warn about it loudly.
- Failures in the background never reach the webhook caller; they only show
  up in the logs (or as an errored verdict when RUNTASK_REPORT_ERRORS=1).
"""

import os
import json
import time
import queue
import logging
from typing import Any, Dict

import requests
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import FileResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from dotenv import load_dotenv
load_dotenv(dotenv_path=".env")  # Load variables from .env if present (handy for local dev)

from config import Settings
from fetcher import workspace_dir
from models import InvalidRunId, RunTaskRequest
from pipeline import GRAPH_FILE, JobPipeline
from verify import verify_signature

# ---------------- App / Logging ----------------
app = FastAPI(title="Run Task Scanner", version="1.0.0")
log = logging.getLogger("runtask.webhook")
logging.basicConfig(level=os.getenv("LOGLEVEL", "INFO"))
BOOT_TS = time.time()

# ---------------- Config ----------------
SETTINGS = Settings.from_env()
PIPELINE = JobPipeline(SETTINGS)

SIGNATURE_HEADER = "X-TFC-Task-Signature"
PUBLIC_IP_URL = "https://ipv4.icanhazip.com"

if not SETTINGS.hmac_key:
    log.warning("HMAC_KEY not set. Running WITHOUT webhook signature verification.")

# ---------------- Helpers ----------------

def _get_public_ip() -> str:
    r = requests.get(PUBLIC_IP_URL, timeout=5)
    r.raise_for_status()
    return r.text.strip()


def resolve_base_url() -> str:
    """BASE_URL if set, else http://<public ip>, else http://localhost."""
    if SETTINGS.base_url:
        return SETTINGS.base_url
    try:
        ip = _get_public_ip()
        if ip:
            return f"http://{ip}"
        log.warning("public IP lookup returned nothing; using localhost as fallback")
    except requests.RequestException as e:
        log.warning("failed to get public IP: %s. Using localhost as fallback.", e)
    return "http://localhost"

# ---------------- Startup / Health ----------------

@app.on_event("startup")
def _startup() -> None:
    PIPELINE.base_url = resolve_base_url()
    log.info("using base URL: %s", PIPELINE.base_url)
    PIPELINE.start()


@app.on_event("shutdown")
def _shutdown() -> None:
    PIPELINE.stop()


@app.get("/health", include_in_schema=False)
def health() -> Dict[str, Any]:
    return {
        "ok": True,
        "service": "runtask-scanner",
        "uptime_s": int(time.time() - BOOT_TS),
        "has_secret": bool(SETTINGS.hmac_key),
        "queue_depth": PIPELINE.depth(),
        "workers": SETTINGS.workers,
    }

# ---------------- Webhook ----------------

@app.post("/")
async def run_task(
    request: Request,
    x_tfc_task_signature: str = Header("", alias=SIGNATURE_HEADER),
):
    body: bytes = await request.body()

    if not SETTINGS.hmac_key:
        log.warning("no HMAC key configured; accepting delivery len=%d without verification", len(body))
    elif not verify_signature(body, x_tfc_task_signature, SETTINGS.hmac_key):
        log.warning("signature mismatch len=%d provided_suffix=%s", len(body), (x_tfc_task_signature or "")[-6:])
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body.decode("utf-8"))
        task = RunTaskRequest.from_payload(payload)
    except (UnicodeDecodeError, ValueError) as e:
        log.info("rejected payload: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    log.info("run=%s stage=%s workspace=%s/%s", task.run_id, task.stage, task.organization_name, task.workspace_name)

    try:
        await run_in_threadpool(PIPELINE.submit, task, SETTINGS.enqueue_timeout_s)
    except queue.Full:
        log.error("job queue full; rejecting run=%s", task.run_id)
        raise HTTPException(status_code=503, detail="Job queue full")

    return PlainTextResponse("200 OK")

# ---------------- Graphs ----------------

@app.get("/runs/{run_id}")
def run_graph(run_id: str):
    try:
        graph = workspace_dir(SETTINGS.base_dir, run_id) / GRAPH_FILE
    except InvalidRunId:
        raise HTTPException(status_code=404, detail="Graph not found")
    if not graph.is_file():
        raise HTTPException(status_code=404, detail="Graph not found")
    return FileResponse(graph, media_type="image/png")


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=SETTINGS.host, port=SETTINGS.port, log_level=os.getenv("LOGLEVEL", "info").lower())


if __name__ == "__main__":
    main()
