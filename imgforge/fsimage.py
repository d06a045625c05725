# imgforge/fsimage.py — build the FAT32 test/user image
#
# Assembly order is fixed: create → format → directories → user programs →
# external test binaries → seal. The image is rebuilt from zero every run.

from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError, EntryMissingWarning
from .fat32 import Fat32Volume, Geometry, format_volume, is_valid_name
from .util import log

BLOCK_SIZE  = 512
BLOCK_COUNT = 131072            # 64 MiB
ZERO_CHUNK  = 1024 * 1024
DEFAULT_DIRECTORIES = ("bin",)
SOURCE_SUFFIXES = (".rs",)


@dataclass
class FilesystemImage:
    path: Path
    block_size: int = BLOCK_SIZE
    block_count: int = BLOCK_COUNT
    formatted: bool = False
    sealed: bool = False

    @property
    def capacity(self) -> int:
        return self.block_size * self.block_count


@dataclass(frozen=True)
class BinaryEntry:
    source: Path
    dest: str


@dataclass
class AssemblyReport:
    image: FilesystemImage
    geometry: Geometry = None
    copied: list = field(default_factory=list)
    missing: list = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing


# ══════════════════════════════════════════════════════════════════════════════
# DISCOVERY
# ══════════════════════════════════════════════════════════════════════════════

def _join(dest_dir: str, name: str) -> str:
    return dest_dir.rstrip("/") + "/" + name


def list_sources(sources_dir: Path) -> list:
    sources_dir = Path(sources_dir)
    if not sources_dir.is_dir():
        return []
    return sorted(p.name for p in sources_dir.iterdir() if p.is_file())


def discover_entries(build_output_dir: Path, source_names, suffixes=SOURCE_SUFFIXES,
                     dest_dir: str = "/"):
    """Map user program sources to their built artifacts. Returns
    (entries, missing); a source with no artifact is recorded, not fatal."""
    build_output_dir = Path(build_output_dir)
    entries, missing = [], []
    for src in source_names:
        name = src
        for suffix in suffixes:
            if name.endswith(suffix):
                name = name[:-len(suffix)]
                break
        artifact = build_output_dir / name
        if artifact.is_file():
            entries.append(BinaryEntry(artifact, _join(dest_dir, name)))
        else:
            missing.append(EntryMissingWarning(artifact, _join(dest_dir, name),
                                               reason=f"no artifact for {src}"))
    return entries, missing


def discover_external_test_binaries(test_suite_dir: Path, dest_dir: str = "/"):
    test_suite_dir = Path(test_suite_dir)
    if not test_suite_dir.is_dir():
        return [], [EntryMissingWarning(test_suite_dir, None, reason="test suite directory not found")]
    entries = [BinaryEntry(p, _join(dest_dir, p.name))
               for p in sorted(test_suite_dir.iterdir(), key=lambda p: p.name) if p.is_file()]
    return entries, []


# ══════════════════════════════════════════════════════════════════════════════
# IMAGE OPERATIONS
# ══════════════════════════════════════════════════════════════════════════════

def create_image(path: Path, block_size: int = BLOCK_SIZE,
                 block_count: int = BLOCK_COUNT) -> FilesystemImage:
    if block_size <= 0 or block_count <= 0:
        raise ConfigError(f"image size must be positive, got {block_count} × {block_size}",
                          step="create")
    image = FilesystemImage(Path(path), block_size, block_count)
    image.path.parent.mkdir(parents=True, exist_ok=True)
    remaining = image.capacity
    zeros = bytes(min(ZERO_CHUNK, remaining))
    # real zeros, not a sparse truncate: ENOSPC must surface here
    with open(image.path, "wb") as f:
        while remaining:
            n = min(len(zeros), remaining)
            f.write(zeros[:n] if n < len(zeros) else zeros)
            remaining -= n
    log(f"[OK]    {image.path.name} — {block_count} × {block_size} = {image.capacity} bytes")
    return image


class FilesystemImageAssembler:
    def __init__(self, path: Path, block_size: int = BLOCK_SIZE, block_count: int = BLOCK_COUNT,
                 sectors_per_cluster: int = 1, directories=DEFAULT_DIRECTORIES):
        self.image = FilesystemImage(Path(path), block_size, block_count)
        self.sectors_per_cluster = sectors_per_cluster
        self.directories = tuple(directories)
        self.report = AssemblyReport(self.image)
        self._volume = None

    def create_image(self) -> FilesystemImage:
        self.image = create_image(self.image.path, self.image.block_size, self.image.block_count)
        self.report = AssemblyReport(self.image)
        return self.image

    def format_fat32(self) -> Geometry:
        geo = format_volume(self.image.path, self.sectors_per_cluster)
        self.image.formatted = True
        self.report.geometry = geo
        log(f"[OK]    FAT32 — {geo.cluster_count} clusters × {geo.cluster_size} bytes, "
            f"FAT {geo.fat_sectors} sectors × {geo.fat_count}")
        return geo

    def _open(self) -> Fat32Volume:
        if self.image.sealed:
            raise ValueError(f"{self.image.path}: image is sealed")
        if self._volume is None:
            self._volume = Fat32Volume(self.image.path)
        return self._volume

    def create_directory(self, path: str):
        self._open().mkdir(path)
        log(f"  ✓ ::/{path.strip('/')}/")

    def copy_file(self, host_path: Path, image_path: str) -> bool:
        host_path = Path(host_path)
        vol = self._open()
        if not host_path.is_file():
            warning = EntryMissingWarning(host_path, image_path)
            self.report.missing.append(warning)
            log(f"[WARN]  {host_path.name} not found in {host_path.parent}")
            return False
        if not is_valid_name(image_path.rstrip("/").rpartition("/")[2]):
            self.report.missing.append(EntryMissingWarning(host_path, image_path,
                                                           reason="name not representable on FAT"))
            log(f"[WARN]  {host_path.name} — name not representable on FAT, skipped")
            return False
        with open(host_path, "rb") as src:
            vol.write_file(image_path, src, host_path.stat().st_size)
        self.report.copied.append(BinaryEntry(host_path, image_path))
        log(f"  ✓ {host_path.name} → ::{image_path}")
        return True

    def seal(self):
        if self._volume is not None:
            self._volume.close()
            self._volume = None
        self.image.sealed = True

    def assemble(self, local_entries, external_entries, missing=()) -> AssemblyReport:
        log("=== ASSEMBLING FILESYSTEM IMAGE ===")
        self.create_image()
        self.format_fat32()
        self.report.missing.extend(missing)
        try:
            for d in self.directories:
                self.create_directory(d)
            for e in local_entries:
                self.copy_file(e.source, e.dest)
            for e in external_entries:
                self.copy_file(e.source, e.dest)
        finally:
            self.seal()
        log(f"[OK]    {self.image.path.name} — {len(self.report.copied)} files, "
            f"{len(self.report.missing)} skipped")
        return self.report


def assemble_image(path: Path, user_output_dir: Path, user_sources_dir: Path,
                   test_suite_dir: Path, suffixes=SOURCE_SUFFIXES, **kwargs) -> AssemblyReport:
    local, missing = discover_entries(user_output_dir, list_sources(user_sources_dir), suffixes)
    external, ext_missing = discover_external_test_binaries(test_suite_dir)
    for w in missing + ext_missing:
        log(f"[WARN]  {w}")
    return FilesystemImageAssembler(path, **kwargs).assemble(local, external, missing + ext_missing)


def summary_lines(report: AssemblyReport) -> list:
    lines = [f"{report.image.path}: {len(report.copied)} copied, {len(report.missing)} skipped"]
    for w in report.missing:
        lines.append(f"  ✗ {w.source}" + (f" → ::{w.dest}" if w.dest else "") + f"  ({w.reason})")
    return lines
