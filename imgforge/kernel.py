# imgforge/kernel.py — compile the kernel, extract the raw binary, deploy it

import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .config import ToolchainConfig
from .elf import flatten_file, load_segments
from .errors import ExtractionError, ToolchainError
from .matrix import BuildMatrixResolver, BuildTarget
from .util import atomic_write, log, run, sectors_of


@dataclass(frozen=True)
class KernelArtifact:
    executable: Path
    raw_binary: Path
    size: int


class KernelImageBuilder:
    def __init__(self, resolver: BuildMatrixResolver, toolchain: ToolchainConfig = None):
        self.resolver = resolver
        self.toolchain = toolchain or ToolchainConfig()

    def _env(self) -> dict:
        env = os.environ.copy()
        if self.toolchain.bin_dir is not None:
            env["PATH"] = f"{self.toolchain.bin_dir}{os.pathsep}{env.get('PATH', '')}"
        if self.toolchain.log_level:
            env["LOG"] = self.toolchain.log_level
        return env

    def compile(self, target: BuildTarget) -> Path:
        log(f"=== COMPILING KERNEL ({target}) ===")
        resolved = self.resolver.resolve(target)

        cmd = [self.toolchain.tool(self.toolchain.cargo), "build"]
        if target.mode == "release":
            cmd.append("--release")
        cmd += ["--target", resolved.triple, "--features", " ".join(resolved.features)]
        run(cmd, step="compile", target=target,
            cwd=str(self.resolver.kernel_dir), env=self._env())

        if not resolved.executable.is_file():
            raise ToolchainError(f"build finished but {resolved.executable} was not produced",
                                 step="compile", target=target)
        log(f"[OK]    {resolved.executable.name} — {resolved.executable.stat().st_size} bytes")
        return resolved.executable

    def extract_raw_binary(self, executable: Path, output: Path = None) -> KernelArtifact:
        executable = Path(executable)
        output = Path(output) if output else executable.with_name(executable.name + ".bin")
        log(f"=== EXTRACTING RAW BINARY ({executable.name}) ===")

        if self.toolchain.objcopy:
            self._objcopy(executable, output)
        else:
            atomic_write(output, flatten_file(executable))

        size = output.stat().st_size
        log(f"[OK]    {output.name} — {size} bytes → {sectors_of(output)} sectors")
        return KernelArtifact(executable, output, size)

    def _objcopy(self, executable: Path, output: Path):
        if not executable.is_file():
            raise ExtractionError(f"{executable}: linked executable not found", step="extract")
        load_segments(executable.read_bytes(), str(executable))
        output.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{output.name}.", dir=output.parent)
        os.close(fd)
        try:
            run([self.toolchain.tool(self.toolchain.objcopy), str(executable),
                 "--strip-all", "-O", "binary", tmp], step="extract")
            os.replace(tmp, output)
        finally:
            if os.path.exists(tmp):
                os.unlink(tmp)

    def build(self, target: BuildTarget) -> KernelArtifact:
        executable = self.compile(target)
        return self.extract_raw_binary(executable)


def deploy(artifact: KernelArtifact, dest: Path) -> Path:
    """Copy the raw binary to the bootloader pickup path via a temporary file
    in the destination directory followed by a rename."""
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{dest.name}.", dir=dest.parent)
    try:
        with os.fdopen(fd, "wb") as out, open(artifact.raw_binary, "rb") as src:
            shutil.copyfileobj(src, out)
        os.replace(tmp, dest)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)
    log(f"[OK]    {artifact.raw_binary.name} → {dest}")
    return dest
