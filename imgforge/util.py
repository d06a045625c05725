# imgforge/util.py — log / run / file helpers shared by every step

import math
import os
import shutil
import subprocess
import tempfile
from datetime import datetime
from pathlib import Path

from .errors import ToolchainError

_LOG_FILE: Path | None = None


def set_log_file(path: Path | None):
    global _LOG_FILE
    _LOG_FILE = Path(path) if path is not None else None


def reset_logs():
    if _LOG_FILE is None:
        return
    _LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    if _LOG_FILE.exists():
        _LOG_FILE.unlink()


def log(msg: str):
    ts   = datetime.now().strftime("%H:%M:%S.%f")[:-3]
    line = f"[{ts}] {msg}"
    print(line)
    if _LOG_FILE is not None:
        _LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(_LOG_FILE, "a", encoding="utf-8") as f:
            f.write(line + "\n")


def run(cmd: list, step: str, target=None, **kwargs) -> subprocess.CompletedProcess:
    """Run a toolchain command; any failure becomes ToolchainError with the
    tool's own stderr as the message."""
    cmd = [str(c) for c in cmd]
    log(f"  > {' '.join(cmd)}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, **kwargs)
    except OSError as e:
        log(f"[ERROR] {cmd[0]}: {e.strerror or e}")
        raise ToolchainError(f"{cmd[0]}: {e.strerror or e}", step=step, target=target) from e
    if result.returncode != 0:
        log(f"[ERROR] Failed with exit code {result.returncode}")
        message = result.stderr.strip() or result.stdout.strip() \
            or f"{cmd[0]} exited with code {result.returncode}"
        raise ToolchainError(message, step=step, target=target)
    return result


def find_tool(*names, search: Path | None = None) -> str | None:
    for n in names:
        if search is not None:
            cand = Path(search) / n
            if cand.is_file() and os.access(cand, os.X_OK):
                return str(cand)
        p = shutil.which(n)
        if p:
            return p
    return None


def atomic_write(dest: Path, data: bytes):
    """Write through a sibling temporary file and rename it over dest, so a
    reader never sees a half-written file."""
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{dest.name}.", dir=dest.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, dest)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def sectors_of(p: Path, sector: int = 512) -> int:
    return math.ceil(p.stat().st_size / sector)


def human(p: Path) -> str:
    b = p.stat().st_size
    return f"{b/(1024*1024):.1f} MB" if b >= 1024*1024 else f"{b//1024} KB"
