"""
Job pipeline: a bounded FIFO queue drained by background worker threads.

Each job walks  queued -> downloading -> rendering -> scanning -> reporting -> done.
Fetch and scan failures short-circuit to `abandoned`; graph rendering is
best-effort and delivery failures still end the job as `done`.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from analyzers.graph_renderer import RenderError, render_graph
from analyzers.pattern_scanner import ScanError, read_patterns, scan_tree
from config import Settings
from fetcher import FetchError, download_configuration
from models import Job, JobState, RunTaskRequest
from reporter import DeliveryError, build_verdict, errored_verdict, send_verdict

log = logging.getLogger("runtask.pipeline")

GRAPH_FILE = "graph.png"

_STOP = object()


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep * 2:
        return "…"
    return s[:keep] + "…" + s[-keep:]


class JobPipeline:
    def __init__(self, settings: Settings, base_url: Optional[str] = None):
        self.settings = settings
        self.base_url = (base_url or settings.base_url or "http://localhost").rstrip("/")
        self.queue: "queue.Queue[object]" = queue.Queue(maxsize=settings.queue_size)
        self._seq = itertools.count(1)
        self._seq_lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._stopping = threading.Event()
        self._locks_guard = threading.Lock()
        self._run_locks: Dict[str, list] = {}

    # ---------------- Queue ----------------

    def submit(self, request: RunTaskRequest, timeout: Optional[float] = None) -> Job:
        """Enqueue a job. Blocks while the queue is full; raises queue.Full after `timeout`."""
        with self._seq_lock:
            job = Job(request=request, seq=next(self._seq))
        if timeout is None:
            self.queue.put(job)
        else:
            self.queue.put(job, timeout=timeout)
        log.info("queued job=%d run=%s depth=%d", job.seq, job.run_id, self.queue.qsize())
        return job

    def depth(self) -> int:
        return self.queue.qsize()

    # ---------------- Workers ----------------

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._threads = [
            threading.Thread(target=self._worker, name=f"runtask-worker-{i}", daemon=True)
            for i in range(self.settings.workers)
        ]
        for t in self._threads:
            t.start()
        log.info("started %d worker(s)", len(self._threads))

    def stop(self, timeout: float = 5.0) -> None:
        """Ask workers to exit after their current job. Never blocks on a full queue."""
        threads, self._threads = self._threads, []
        self._stopping.set()
        for _ in threads:
            try:
                self.queue.put_nowait(_STOP)
            except queue.Full:
                # busy workers see the stop flag once their current job ends
                break
        for t in threads:
            t.join(timeout)

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def _worker(self) -> None:
        while True:
            item = self.queue.get()
            try:
                if item is _STOP:
                    return
                self._safe_process(item)  # type: ignore[arg-type]
            finally:
                self.queue.task_done()
            if self._stopping.is_set():
                return
            if self.settings.job_pause_s > 0:
                time.sleep(self.settings.job_pause_s)

    def drain(self) -> List[Job]:
        """Process everything currently queued on the calling thread, in order."""
        done: List[Job] = []
        while True:
            try:
                item = self.queue.get_nowait()
            except queue.Empty:
                return done
            try:
                if item is not _STOP:
                    self._safe_process(item)  # type: ignore[arg-type]
                    done.append(item)  # type: ignore[arg-type]
            finally:
                self.queue.task_done()

    def _safe_process(self, job: Job) -> JobState:
        try:
            return self.process_job(job)
        except Exception:
            log.exception("job=%d run=%s crashed", job.seq, job.run_id)
            job.state = JobState.ABANDONED
            return job.state

    # ---------------- Per-run exclusion ----------------

    @contextmanager
    def _run_lock(self, run_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._run_locks.setdefault(run_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._run_locks.pop(run_id, None)

    # ---------------- Steps ----------------

    def _transition(self, job: Job, state: JobState) -> None:
        log.info("job=%d run=%s %s -> %s", job.seq, job.run_id, job.state.value, state.value)
        job.state = state

    def _abandon(self, job: Job, reason: str) -> JobState:
        log.error("job=%d run=%s abandoned: %s", job.seq, job.run_id, reason)
        if self.settings.report_errors:
            req = job.request
            try:
                send_verdict(
                    req.task_result_callback_url,
                    req.access_token,
                    errored_verdict(reason, req.run_id, self.base_url),
                    timeout_s=self.settings.http_timeout_s,
                )
            except DeliveryError as e:
                log.error("job=%d errored verdict not delivered: %s", job.seq, e)
        self._transition(job, JobState.ABANDONED)
        return job.state

    def process_job(self, job: Job) -> JobState:
        s = self.settings
        req = job.request
        log.info("processing job=%d run=%s org=%s workspace=%s token=%s",
                 job.seq, req.run_id, req.organization_name, req.workspace_name, _mask(req.access_token))

        with self._run_lock(req.run_id):
            self._transition(job, JobState.DOWNLOADING)
            try:
                run_dir = download_configuration(
                    req.configuration_version_download_url,
                    req.access_token,
                    req.run_id,
                    s.base_dir,
                    timeout_s=s.http_timeout_s,
                )
            except FetchError as e:
                return self._abandon(job, str(e))

            config_dir = run_dir / s.config_subdir
            graph_file = run_dir / GRAPH_FILE

            self._transition(job, JobState.RENDERING)
            graph_file.unlink(missing_ok=True)
            try:
                render_graph(
                    config_dir,
                    graph_file,
                    terraform_bin=s.terraform_bin,
                    dot_bin=s.dot_bin,
                    timeout_s=s.render_timeout_s,
                )
            except RenderError as e:
                log.warning("job=%d error generating graph: %s", job.seq, e)

            self._transition(job, JobState.SCANNING)
            try:
                patterns = read_patterns(s.patterns_path)
                counts = scan_tree(config_dir, patterns)
            except ScanError as e:
                return self._abandon(job, str(e))

            verdict = build_verdict(counts, req.run_id, self.base_url)
            if verdict.status == "failed":
                log.info("job=%d violations:\n%s", job.seq, verdict.message)

            self._transition(job, JobState.REPORTING)
            try:
                send_verdict(req.task_result_callback_url, req.access_token, verdict, timeout_s=s.http_timeout_s)
            except DeliveryError as e:
                log.error("job=%d verdict delivery failed: %s", job.seq, e)

            self._transition(job, JobState.DONE)
            return job.state
