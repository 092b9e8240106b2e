from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Optional

RUN_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")

REQUIRED_FIELDS = (
    "run_id",
    "access_token",
    "task_result_callback_url",
    "configuration_version_download_url",
)


class InvalidRunId(ValueError):
    pass


def validate_run_id(run_id: Any) -> str:
    """Return run_id unchanged if it is safe as a single path/URL segment."""
    if not isinstance(run_id, str) or not RUN_ID_RE.match(run_id):
        raise InvalidRunId(f"invalid run_id: {run_id!r}")
    return run_id


@dataclass(frozen=True)
class RunTaskRequest:
    run_id: str
    access_token: str
    task_result_callback_url: str
    configuration_version_download_url: str

    # Carried through, not interpreted.
    payload_version: Optional[int] = None
    stage: str = ""
    is_speculative: bool = False
    task_result_id: str = ""
    task_result_enforcement_level: str = ""
    run_app_url: str = ""
    run_message: str = ""
    run_created_at: str = ""
    run_created_by: str = ""
    workspace_id: str = ""
    workspace_name: str = ""
    workspace_app_url: str = ""
    organization_name: str = ""
    vcs_repo_url: str = ""
    vcs_branch: str = ""
    vcs_pull_request_url: str = ""
    vcs_commit_url: str = ""
    configuration_version_id: str = ""
    workspace_working_directory: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> "RunTaskRequest":
        if not isinstance(payload, dict):
            raise ValueError("payload must be a JSON object")
        for name in REQUIRED_FIELDS:
            value = payload.get(name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"missing or invalid field: {name}")
        validate_run_id(payload["run_id"])
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in payload.items() if k in known and v is not None})


class JobState(str, Enum):
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    RENDERING = "rendering"
    SCANNING = "scanning"
    REPORTING = "reporting"
    DONE = "done"
    ABANDONED = "abandoned"


@dataclass
class Job:
    request: RunTaskRequest
    seq: int
    enqueued_at: float = field(default_factory=time.time)
    state: JobState = JobState.QUEUED

    @property
    def run_id(self) -> str:
        return self.request.run_id


@dataclass(frozen=True)
class Verdict:
    status: str  # passed | failed
    message: str = ""
    url: str = ""

    def to_document(self) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {"status": self.status}
        if self.message:
            attributes["message"] = self.message
        if self.url:
            attributes["url"] = self.url
        return {"data": {"type": "task-results", "attributes": attributes}}
