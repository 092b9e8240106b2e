"""Download a run's configuration version and unpack it into the run workspace."""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import time
from pathlib import Path, PurePosixPath
from typing import Dict

import certifi
import requests

from models import InvalidRunId, validate_run_id

log = logging.getLogger("runtask.fetch")

ARCHIVE_SUFFIX = ".tar.gz"


class FetchError(RuntimeError):
    """Download or extraction failed; fatal for the job."""


def ca_bundle() -> str:
    return (
        os.getenv("REQUESTS_CA_BUNDLE")
        or os.getenv("SSL_CERT_FILE")
        or certifi.where()
    )


def bearer_headers(token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/vnd.api+json",
        "User-Agent": "runtask-scanner/1.0",
    }


def workspace_dir(base_dir: Path, run_id: str) -> Path:
    """Return <base_dir>/<run_id>; raises InvalidRunId for unsafe ids."""
    validate_run_id(run_id)
    return Path(base_dir).resolve() / run_id


def archive_path(base_dir: Path, run_id: str) -> Path:
    """<base_dir>/<run_id>.tar.gz, beside the workspace so no archive member can overwrite it."""
    return workspace_dir(base_dir, run_id).with_name(run_id + ARCHIVE_SUFFIX)


def download_configuration(url: str, token: str, run_id: str, base_dir: Path, timeout_s: int = 25) -> Path:
    try:
        run_dir = workspace_dir(base_dir, run_id)
    except InvalidRunId as e:
        raise FetchError(str(e)) from e
    deadline = time.monotonic() + timeout_s
    try:
        r = requests.get(url, headers=bearer_headers(token), timeout=timeout_s, verify=ca_bundle(), stream=True)
    except requests.RequestException as e:
        raise FetchError(f"download failed: {e}") from e

    with r:
        if not 200 <= r.status_code < 300:
            log.error("GET %s -> %s %s: %s", url, r.status_code, r.reason, (r.text or "")[:800])
            raise FetchError(f"request failed with status code: {r.status_code}")

        run_dir.mkdir(parents=True, exist_ok=True)
        archive = archive_path(base_dir, run_id)
        try:
            with archive.open("wb") as fh:
                for chunk in r.iter_content(chunk_size=64 * 1024):
                    if time.monotonic() > deadline:
                        raise FetchError(f"download deadline exceeded after {timeout_s}s")
                    if chunk:
                        fh.write(chunk)
        except requests.RequestException as e:
            archive.unlink(missing_ok=True)
            raise FetchError(f"download interrupted: {e}") from e
        except FetchError:
            archive.unlink(missing_ok=True)
            raise

    log.info("download ok run=%s bytes=%d", run_id, archive.stat().st_size)
    extract_tarball(archive, run_dir)
    log.info("extract ok run=%s", run_id)
    return run_dir


def _member_target(destination_root: Path, name: str) -> Path:
    normalized = name.replace("\\", "/")
    member = PurePosixPath(normalized)
    if member.is_absolute() or ".." in member.parts:
        raise FetchError(f"archive member path is not allowed: {name}")
    target = (destination_root / member).resolve()
    try:
        target.relative_to(destination_root)
    except ValueError as e:
        raise FetchError(f"archive member escapes workspace: {name}") from e
    return target


def extract_tarball(archive: Path, destination: Path) -> None:
    """Extract directories and regular files only; anything else is an error."""
    destination_root = Path(destination).resolve()
    try:
        with tarfile.open(archive, mode="r:gz") as tf:
            for member in tf:
                if not member.name or member.name in (".", "./"):
                    continue
                target = _member_target(destination_root, member.name)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isreg():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    src = tf.extractfile(member)
                    if src is None:
                        raise FetchError(f"cannot read archive member: {member.name}")
                    with src, target.open("wb") as out:
                        shutil.copyfileobj(src, out)
                else:
                    raise FetchError(f"unsupported archive entry type {member.type!r} in {member.name}")
    except (tarfile.TarError, EOFError, OSError) as e:
        raise FetchError(f"cannot extract {archive.name}: {e}") from e
