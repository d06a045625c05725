# imgforge/config.py — project layout, toolchain config and the settings store
#
# All paths hang off one explicit project root; nothing is read from the
# current directory or from environment variables.

import re
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError
from .util import atomic_write, find_tool, log

SETTINGS_NAME = ".imgforge.env"
TESTSUITE_REL = Path("test") / "testsuits-for-oskernel" / "riscv-syscalls-testing" / "user"

_KEY_RE  = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_LINE_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*=(.*)$")


@dataclass(frozen=True)
class ProjectLayout:
    root: Path

    def __post_init__(self):
        object.__setattr__(self, "root", Path(self.root).resolve())

    @property
    def kernel_dir(self) -> Path:
        return self.root / "os"

    @property
    def user_dir(self) -> Path:
        return self.root / "user"

    @property
    def user_sources(self) -> Path:
        return self.user_dir / "src" / "bin"

    def user_output(self, triple: str, mode: str) -> Path:
        return self.user_dir / "target" / triple / mode

    def testsuite_dir(self, arch: str) -> Path:
        return self.root / TESTSUITE_REL / arch

    @property
    def fs_image(self) -> Path:
        return self.root / "fs-img" / "fs.img"

    @property
    def deploy_path(self) -> Path:
        return self.root / "kernel-qemu"

    @property
    def bootloader_dir(self) -> Path:
        return self.root / "bootloader"

    @property
    def build_dir(self) -> Path:
        return self.root / "build"

    @property
    def build_log(self) -> Path:
        return self.build_dir / "logs" / "build.log"

    @property
    def settings(self) -> Path:
        return self.root / SETTINGS_NAME


@dataclass(frozen=True)
class ToolchainConfig:
    bin_dir: Path | None = None
    cargo: str = "cargo"
    objcopy: str | None = None
    log_level: str | None = None

    def tool(self, name: str) -> str:
        # unresolved names are passed through; run() reports them
        return find_tool(name, search=self.bin_dir) or name

    @classmethod
    def from_settings(cls, settings: dict, **overrides):
        bin_dir = overrides.pop("bin_dir", None) or settings.get("TOOLCHAIN_DIR")
        return cls(bin_dir=Path(bin_dir) if bin_dir else None, **overrides)


# ══════════════════════════════════════════════════════════════════════════════
# SETTINGS STORE
# ══════════════════════════════════════════════════════════════════════════════

def load_settings(path: Path) -> dict:
    path = Path(path)
    if not path.exists():
        return {}
    values = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        m = _LINE_RE.match(line)
        if m and not line.lstrip().startswith("#"):
            values[m.group(1)] = _unquote(m.group(2).strip())
    return values


def apply_settings(path: Path, values: dict) -> list:
    """Upsert KEY=VALUE pairs into the store. Returns the keys whose value
    actually changed; the file is left untouched when that list is empty."""
    path = Path(path)
    for key in values:
        if not _KEY_RE.match(key):
            raise ConfigError(f"invalid setting name {key!r}", step="setup")
        if "\n" in str(values[key]):
            raise ConfigError(f"value for {key} spans multiple lines", step="setup")

    lines = path.read_text(encoding="utf-8").splitlines() if path.exists() else []
    pending = {k: str(v) for k, v in values.items()}
    changed = []
    out = []
    for line in lines:
        m = _LINE_RE.match(line)
        key = m.group(1) if m and not line.lstrip().startswith("#") else None
        if key in pending:
            new = pending.pop(key)
            if _unquote(m.group(2).strip()) != new:
                line = f"{key}={_quote(new)}"
                changed.append(key)
                log(f"[OK]    Updated: {key}")
            else:
                log(f"[--]    Exists:  {key}")
        out.append(line)
    for key, value in pending.items():
        out.append(f"{key}={_quote(value)}")
        changed.append(key)
        log(f"[OK]    Added:   {key}")

    if changed:
        atomic_write(path, ("\n".join(out) + "\n").encode("utf-8"))
    return changed


def _quote(value: str) -> str:
    if value == "" or any(c.isspace() or c in "\"'#$" for c in value):
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return value


def _unquote(raw: str) -> str:
    if len(raw) >= 2 and raw[0] == raw[-1] == '"':
        return re.sub(r"\\(.)", r"\1", raw[1:-1])
    if len(raw) >= 2 and raw[0] == raw[-1] == "'":
        return raw[1:-1]
    return raw
