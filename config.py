import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def bool_env(name: str, default: bool = False) -> bool:
    v = os.environ.get(name)
    if v is None:
        return default
    return v.lower() in {"1","true","yes","on"}


def int_env(name: str, default: int) -> int:
    v = (os.environ.get(name) or "").strip()
    return int(v) if v else default


def float_env(name: str, default: Optional[float]) -> Optional[float]:
    v = (os.environ.get(name) or "").strip()
    return float(v) if v else default


@dataclass(frozen=True)
class Settings:
    hmac_key: str = ""
    base_url: str = ""
    base_dir: Path = Path("/app")
    patterns_file: Optional[Path] = None
    config_subdir: str = "tf/demo_server"
    queue_size: int = 100
    workers: int = 1
    enqueue_timeout_s: Optional[float] = None
    job_pause_s: float = 1.0
    report_errors: bool = False
    http_timeout_s: int = 25
    render_timeout_s: int = 120
    terraform_bin: str = "terraform"
    dot_bin: str = "dot"
    host: str = "0.0.0.0"
    port: int = 80

    @property
    def patterns_path(self) -> Path:
        return self.patterns_file or (self.base_dir / "patternsFile.txt")

    @classmethod
    def from_env(cls) -> "Settings":
        patterns = (os.getenv("RUNTASK_PATTERNS_FILE") or "").strip()
        return cls(
            hmac_key=(os.getenv("HMAC_KEY") or "").strip(),
            base_url=(os.getenv("BASE_URL") or "").strip().rstrip("/"),
            base_dir=Path(os.getenv("RUNTASK_BASE_DIR") or "/app"),
            patterns_file=Path(patterns) if patterns else None,
            config_subdir=(os.getenv("RUNTASK_CONFIG_SUBDIR") or "tf/demo_server").strip("/"),
            queue_size=int_env("RUNTASK_QUEUE_SIZE", 100),
            workers=max(1, int_env("RUNTASK_WORKERS", 1)),
            enqueue_timeout_s=float_env("RUNTASK_ENQUEUE_TIMEOUT_S", None),
            job_pause_s=float_env("RUNTASK_JOB_PAUSE_S", 1.0) or 0.0,
            report_errors=bool_env("RUNTASK_REPORT_ERRORS"),
            http_timeout_s=int_env("HTTP_TIMEOUT_S", 25),
            render_timeout_s=int_env("RENDER_TIMEOUT_S", 120),
            terraform_bin=os.getenv("TERRAFORM_BIN") or "terraform",
            dot_bin=os.getenv("DOT_BIN") or "dot",
            host=os.getenv("RUNTASK_HOST") or "0.0.0.0",
            port=int_env("RUNTASK_PORT", 80),
        )
