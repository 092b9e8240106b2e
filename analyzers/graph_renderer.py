from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

log = logging.getLogger("runtask.render")

# --------------------------------- Public API ---------------------------------

@dataclass
class RenderError(Exception):
    exit_code: int
    cmd: List[str]
    stderr: str

    def __str__(self) -> str:
        return _fmt_render_error(self.cmd, self.exit_code, self.stderr)


def render_graph(
    config_dir: Path,
    output_file: Path,
    terraform_bin: str = "terraform",
    dot_bin: str = "dot",
    timeout_s: int = 120,
) -> Path:
    """
    Run `terraform init`, `terraform graph` and `dot -Tpng` against config_dir
    and write the PNG to output_file.

    Every step receives cwd=config_dir explicitly; the process working
    directory is never touched, so concurrent jobs cannot interfere.
    """
    config_dir = Path(config_dir)
    if not config_dir.is_dir():
        raise RenderError(exit_code=2, cmd=[], stderr=f"{config_dir} directory not found")

    tf = _ensure_tool(terraform_bin)
    dot = _ensure_tool(dot_bin)

    _run([tf, "init", "-input=false", "-no-color"], cwd=config_dir, timeout_s=timeout_s)
    graph = _run([tf, "graph"], cwd=config_dir, timeout_s=timeout_s)
    _run([dot, "-Tpng", "-o", str(output_file)], cwd=config_dir, timeout_s=timeout_s, stdin=graph)

    log.info("graph rendered: %s", output_file)
    return Path(output_file)

# --------------------------------- Internals ----------------------------------

def _ensure_tool(name: str) -> str:
    exe = shutil.which(name)
    if not exe:
        raise RenderError(exit_code=127, cmd=[name], stderr=f"{name} not found on PATH")
    return exe


def _run(cmd: List[str], cwd: Path, timeout_s: int, stdin: Optional[bytes] = None) -> bytes:
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            input=stdin,
            capture_output=True,
            check=False,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired as e:
        raise RenderError(exit_code=124, cmd=cmd, stderr=f"timed out after {timeout_s}s: {_text(e.stderr)}")
    except OSError as e:
        raise RenderError(exit_code=126, cmd=cmd, stderr=str(e))

    if proc.returncode != 0:
        raise RenderError(proc.returncode, cmd, _text(proc.stderr))
    return proc.stdout or b""


def _text(b: Optional[bytes]) -> str:
    if not b:
        return ""
    return b.decode("utf-8", errors="replace") if isinstance(b, bytes) else str(b)


def _fmt_render_error(cmd: List[str], code: int, stderr: str) -> str:
    return (
        f"Graph rendering failed (exit={code}).\n"
        f"Command: {shlex.join(cmd)}\n"
        f"STDERR (truncated):\n{(stderr or '').strip()[:800]}"
    )
