# imgforge/matrix.py — (arch, board, mode, features) → concrete build parameters

import shutil
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError
from .util import log

MODES = ("debug", "release")

# ══════════════════════════════════════════════════════════════════════════════
# REGISTRIES
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ArchSpec:
    triple: str
    feature: str
    linker_dir: str


@dataclass(frozen=True)
class BoardSpec:
    arch: str
    linker_script: str


ARCHES = {
    "riscv64":     ArchSpec("riscv64gc-unknown-none-elf", "riscv",     "src/hal/arch/riscv"),
    "loongarch64": ArchSpec("loongarch64-unknown-none",   "loongarch", "src/hal/arch/loongarch"),
}

BOARDS = {
    "rvqemu":   BoardSpec("riscv64",     "linker-rvqemu.ld"),
    "laqemu":   BoardSpec("loongarch64", "linker-laqemu.ld"),
    "la2k1000": BoardSpec("loongarch64", "linker-la2k1000.ld"),
}

ACTIVE_LINKER_SCRIPT = "linker.ld"
KERNEL_NAME = "os"


@dataclass(frozen=True)
class BuildTarget:
    arch: str
    board: str
    mode: str = "release"
    features: tuple = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "features", tuple(self.features))

    def __str__(self):
        s = f"{self.arch}/{self.board}/{self.mode}"
        return f"{s}+{','.join(self.features)}" if self.features else s


@dataclass(frozen=True)
class ResolvedBuild:
    target: BuildTarget
    triple: str
    linker_script: Path
    active_linker_script: Path
    executable: Path
    raw_binary: Path
    features: tuple


class BuildMatrixResolver:
    def __init__(self, kernel_dir: Path, arches: dict = None, boards: dict = None):
        self.kernel_dir = Path(kernel_dir)
        self.arches = ARCHES if arches is None else arches
        self.boards = BOARDS if boards is None else boards

    def resolve(self, target: BuildTarget, activate: bool = True) -> ResolvedBuild:
        board = self.boards.get(target.board)
        if board is None:
            raise ConfigError(f"unknown board {target.board!r} (known: {', '.join(sorted(self.boards))})",
                              step="resolve", target=target)
        if board.arch != target.arch:
            raise ConfigError(f"board {target.board!r} is a {board.arch} board, not {target.arch}",
                              step="resolve", target=target)
        if target.mode not in MODES:
            raise ConfigError(f"mode must be one of {', '.join(MODES)}, got {target.mode!r}",
                              step="resolve", target=target)
        arch = self.arches.get(target.arch)
        if arch is None:
            raise ConfigError(f"unknown architecture {target.arch!r}", step="resolve", target=target)

        linker_dir = self.kernel_dir / arch.linker_dir
        script = linker_dir / board.linker_script
        if not script.is_file():
            raise ConfigError(f"linker script {script} does not exist", step="resolve", target=target)

        features = []
        for f in (arch.feature, f"board_{target.board}", *target.features):
            if f not in features:
                features.append(f)

        executable = self.kernel_dir / "target" / arch.triple / target.mode / KERNEL_NAME
        resolved = ResolvedBuild(
            target=target,
            triple=arch.triple,
            linker_script=script,
            active_linker_script=linker_dir / ACTIVE_LINKER_SCRIPT,
            executable=executable,
            raw_binary=executable.with_name(KERNEL_NAME + ".bin"),
            features=tuple(features),
        )
        if activate:
            self.activate(resolved)
        return resolved

    def activate(self, resolved: ResolvedBuild):
        # one activation slot per arch: callers must not resolve concurrently
        shutil.copyfile(resolved.linker_script, resolved.active_linker_script)
        log(f"[OK]    {resolved.linker_script.name} → {resolved.active_linker_script.name}")
