"""Build task-result verdicts and PATCH them back to the run's callback URL."""

import logging
from typing import Dict, Optional

import requests

from analyzers.pattern_scanner import summarize_matches
from fetcher import bearer_headers, ca_bundle
from models import Verdict

log = logging.getLogger("runtask.report")

PASSED_MESSAGE = "Configured patterns not found"
ERRORED_PREFIX = "Run task could not evaluate this run: "


class DeliveryError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def run_url(base_url: str, run_id: str) -> str:
    return f"{base_url.rstrip('/')}/runs/{run_id}"


def build_verdict(counts: Dict[str, int], run_id: str, base_url: str) -> Verdict:
    violations, message = summarize_matches(counts)
    if violations:
        return Verdict(status="failed", message=message, url=run_url(base_url, run_id))
    return Verdict(status="passed", message=PASSED_MESSAGE, url=run_url(base_url, run_id))


def errored_verdict(reason: str, run_id: str, base_url: str) -> Verdict:
    return Verdict(status="failed", message=ERRORED_PREFIX + reason, url=run_url(base_url, run_id))


def send_verdict(callback_url: str, token: str, verdict: Verdict, timeout_s: int = 25) -> None:
    """PATCH the verdict once. Any non-2xx or transport failure raises DeliveryError."""
    doc = verdict.to_document()
    try:
        r = requests.patch(callback_url, json=doc, headers=bearer_headers(token), timeout=timeout_s, verify=ca_bundle())
    except requests.RequestException as e:
        raise DeliveryError(f"callback failed: {e}") from e

    if not 200 <= r.status_code < 300:
        body = (r.text or "")[:800]
        log.error("PATCH %s -> %s %s resp=%s", callback_url, r.status_code, r.reason, body)
        raise DeliveryError(f"unexpected status code: {r.status_code}", status_code=r.status_code, body=body)
    log.info("PATCH %s -> %s status=%s", callback_url, r.status_code, verdict.status)
