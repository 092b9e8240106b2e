from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Pattern, Tuple

log = logging.getLogger("runtask.scan")

# --------------------------------- Public API ---------------------------------

class ScanError(RuntimeError):
    """Pattern file or tree could not be read; fatal for the job."""


def read_patterns(path: Path) -> List[str]:
    """
    Read the newline-delimited pattern file. Blank lines are skipped; every
    other line is kept verbatim (duplicates included).
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ScanError(f"cannot read pattern file {path}: {e}") from e
    return [line.rstrip("\r") for line in text.splitlines() if line.strip()]


def compile_patterns(patterns: Iterable[str]) -> List[Tuple[str, Pattern[bytes]]]:
    """Compile each pattern for byte matching; malformed ones are logged and dropped."""
    out: List[Tuple[str, Pattern[bytes]]] = []
    for p in patterns:
        try:
            out.append((p, re.compile(p.encode("utf-8"))))
        except re.error as e:
            log.error("Error compiling regex pattern %r: %s", p, e)
    return out


def scan_tree(root: Path, patterns: Iterable[str]) -> Dict[str, int]:
    """
    Count non-overlapping matches of every pattern across all regular files
    under root. Returns {pattern_text: total}; a missing root yields {}.
    """
    root = Path(root)
    counts: Dict[str, int] = {}
    if not root.is_dir():
        log.info("%s not found; nothing to scan", root)
        return counts

    compiled = compile_patterns(patterns)
    files = 0
    for path in sorted(root.rglob("*")):
        if path.is_symlink() or not path.is_file():
            continue
        try:
            content = path.read_bytes()
        except OSError as e:
            raise ScanError(f"cannot read {path}: {e}") from e
        files += 1
        for text, rx in compiled:
            n = sum(1 for _ in rx.finditer(content))
            counts[text] = counts.get(text, 0) + n

    log.info("scanned root=%s files=%d patterns=%d", root, files, len(compiled))
    return counts


def summarize_matches(counts: Dict[str, int]) -> Tuple[Dict[str, int], str]:
    """
    Return (violations, message): positive counts only, and a report with one
    "Pattern: P, Matches: N" line per violation sorted by pattern text.
    """
    violations = {p: n for p, n in sorted(counts.items()) if n > 0}
    message = "".join(f"Pattern: {p}, Matches: {n}\n" for p, n in violations.items())
    return violations, message
