# imgforge/fat32.py — FAT32 superfloppy: format, directories, streamed file copy
#
# On-disk layout (no MBR, boot sector at LBA 0):
#   LBA 0        : boot sector (BPB + FAT32 extended BPB)
#   LBA 1        : FSInfo
#   LBA 6 / 7    : backup boot sector / backup FSInfo
#   LBA 32       : FAT #1, then FAT #2
#   data region  : cluster 2 = root directory
#
# Every timestamp is the DOS epoch and the volume id is fixed, so the same
# inputs always give the same bytes.

import math
import struct
from dataclasses import dataclass
from pathlib import Path

from .errors import FormatError, ImageCapacityError

SECTOR_SIZE        = 512
RESERVED_SECTORS   = 32
FAT_COUNT          = 2
MEDIA_DESCRIPTOR   = 0xF8
ROOT_CLUSTER       = 2
FSINFO_SECTOR      = 1
BACKUP_BOOT_SECTOR = 6

MIN_CLUSTERS = 65525
MAX_CLUSTERS = 0x0FFFFFF5
MAX_FILE_SIZE = 0xFFFFFFFF

FREE = 0x00000000
EOC  = 0x0FFFFFFF
CLUSTER_MASK = 0x0FFFFFFF

OEM_NAME          = b"IMGFORGE"
DEFAULT_LABEL     = "NO NAME"
DEFAULT_VOLUME_ID = 0x1A2B3C4D
DOS_EPOCH_DATE    = (0 << 9) | (1 << 5) | 1    # 1980-01-01

ATTR_VOLUME_ID = 0x08
ATTR_DIRECTORY = 0x10
ATTR_ARCHIVE   = 0x20
ATTR_LFN       = 0x0F

DIRENT_SIZE     = 32
DELETED         = 0xE5
LFN_LAST        = 0x40
LFN_CHARS       = 13
CASE_LOWER_BASE = 0x08
CASE_LOWER_EXT  = 0x10

DOT    = b".          "
DOTDOT = b"..         "

_SHORT_CHARS = set("ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!#$%&'()-@^_`{}~")
_BAD_CHARS   = set('"*/:<>?\\|')


# ══════════════════════════════════════════════════════════════════════════════
# GEOMETRY
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Geometry:
    total_sectors: int
    fat_sectors: int
    sectors_per_cluster: int = 1
    bytes_per_sector: int = SECTOR_SIZE
    reserved_sectors: int = RESERVED_SECTORS
    fat_count: int = FAT_COUNT
    root_cluster: int = ROOT_CLUSTER

    @property
    def data_start(self) -> int:
        return self.reserved_sectors + self.fat_count * self.fat_sectors

    @property
    def cluster_count(self) -> int:
        return (self.total_sectors - self.data_start) // self.sectors_per_cluster

    @property
    def cluster_size(self) -> int:
        return self.sectors_per_cluster * self.bytes_per_sector

    def fat_offset(self, copy: int = 0) -> int:
        return (self.reserved_sectors + copy * self.fat_sectors) * self.bytes_per_sector

    def cluster_offset(self, cluster: int) -> int:
        return (self.data_start + (cluster - 2) * self.sectors_per_cluster) * self.bytes_per_sector

    @classmethod
    def from_boot_sector(cls, boot: bytes, name: str = "<image>"):
        if len(boot) < SECTOR_SIZE or boot[510:512] != b"\x55\xAA":
            raise FormatError(f"{name}: missing boot signature", step="open")
        if boot[82:90] != b"FAT32   ":
            raise FormatError(f"{name}: not a FAT32 volume", step="open")
        bps, spc, reserved, fats = struct.unpack_from("<HBHB", boot, 11)
        total = struct.unpack_from("<I", boot, 32)[0]
        fat_sectors = struct.unpack_from("<I", boot, 36)[0]
        root = struct.unpack_from("<I", boot, 44)[0]
        if bps not in (512, 1024, 2048, 4096) or spc == 0 or spc & (spc - 1) or fats == 0:
            raise FormatError(f"{name}: corrupt BPB", step="open")
        return cls(total, fat_sectors, spc, bps, reserved, fats, root)


def compute_geometry(total_bytes: int, sectors_per_cluster: int = 1,
                     bytes_per_sector: int = SECTOR_SIZE) -> Geometry:
    """Size the FATs for an image of total_bytes. Refuses anything that would
    not be a valid FAT32 volume instead of falling back to FAT12/16."""
    if sectors_per_cluster not in (1, 2, 4, 8, 16, 32, 64, 128):
        raise FormatError(f"sectors per cluster must be a power of two ≤ 128, got {sectors_per_cluster}",
                          step="format")
    if total_bytes % bytes_per_sector:
        raise FormatError(f"image size {total_bytes} is not a multiple of {bytes_per_sector}",
                          step="format")
    total = total_bytes // bytes_per_sector
    if total > 0xFFFFFFFF:
        raise FormatError(f"{total} sectors do not fit a 32-bit sector count", step="format")

    fat_sectors = 1
    while True:
        data = total - RESERVED_SECTORS - FAT_COUNT * fat_sectors
        if data <= 0:
            raise FormatError(f"image of {total_bytes} bytes has no room for a data region",
                              step="format")
        clusters = data // sectors_per_cluster
        needed = math.ceil((clusters + 2) * 4 / bytes_per_sector)
        if needed <= fat_sectors:
            break
        fat_sectors = needed

    geo = Geometry(total, fat_sectors, sectors_per_cluster, bytes_per_sector)
    n = geo.cluster_count
    if n < MIN_CLUSTERS:
        raise FormatError(f"{total_bytes} bytes at {sectors_per_cluster} sectors/cluster gives "
                          f"{n} clusters; FAT32 requires at least {MIN_CLUSTERS}", step="format")
    if n > MAX_CLUSTERS:
        raise FormatError(f"{n} clusters exceeds the FAT32 maximum of {MAX_CLUSTERS}", step="format")
    return geo


def _boot_sector(geo: Geometry, label: str, volume_id: int) -> bytes:
    boot = bytearray(geo.bytes_per_sector)
    boot[0:3]  = b"\xEB\x58\x90"
    boot[3:11] = OEM_NAME
    struct.pack_into("<H", boot, 11, geo.bytes_per_sector)
    boot[13] = geo.sectors_per_cluster
    struct.pack_into("<H", boot, 14, geo.reserved_sectors)
    boot[16] = geo.fat_count
    struct.pack_into("<H", boot, 17, 0)     # root entries: 0 on FAT32
    struct.pack_into("<H", boot, 19, 0)     # TotSec16 unused
    boot[21] = MEDIA_DESCRIPTOR
    struct.pack_into("<H", boot, 22, 0)     # FATSz16 unused
    struct.pack_into("<H", boot, 24, 63)
    struct.pack_into("<H", boot, 26, 255)
    struct.pack_into("<I", boot, 28, 0)
    struct.pack_into("<I", boot, 32, geo.total_sectors)
    struct.pack_into("<I", boot, 36, geo.fat_sectors)
    struct.pack_into("<H", boot, 40, 0)
    struct.pack_into("<H", boot, 42, 0)
    struct.pack_into("<I", boot, 44, geo.root_cluster)
    struct.pack_into("<H", boot, 48, FSINFO_SECTOR)
    struct.pack_into("<H", boot, 50, BACKUP_BOOT_SECTOR)
    boot[64] = 0x80
    boot[66] = 0x29
    struct.pack_into("<I", boot, 67, volume_id & 0xFFFFFFFF)
    boot[71:82] = _label_bytes(label)
    boot[82:90] = b"FAT32   "
    boot[510:512] = b"\x55\xAA"
    return bytes(boot)


def _fsinfo(free: int, next_free: int, size: int = SECTOR_SIZE) -> bytes:
    fsinfo = bytearray(size)
    struct.pack_into("<I", fsinfo, 0, 0x41615252)
    struct.pack_into("<I", fsinfo, 484, 0x61417272)
    struct.pack_into("<I", fsinfo, 488, free)
    struct.pack_into("<I", fsinfo, 492, next_free)
    struct.pack_into("<I", fsinfo, 508, 0xAA550000)
    return bytes(fsinfo)


def _label_bytes(label: str) -> bytes:
    label = label.upper()
    if len(label) > 11 or any(c != " " and c not in _SHORT_CHARS for c in label):
        raise FormatError(f"invalid volume label {label!r}", step="format")
    return label.ljust(11).encode("ascii")


def format_volume(path: Path, sectors_per_cluster: int = 1, label: str = DEFAULT_LABEL,
                  volume_id: int = DEFAULT_VOLUME_ID) -> Geometry:
    path = Path(path)
    if not path.is_file():
        raise FormatError(f"{path}: image does not exist", step="format")
    geo = compute_geometry(path.stat().st_size, sectors_per_cluster)
    bps = geo.bytes_per_sector

    boot   = _boot_sector(geo, label, volume_id)
    fsinfo = _fsinfo(geo.cluster_count - 1, geo.root_cluster + 1, bps)
    fat = bytearray(geo.fat_sectors * bps)
    struct.pack_into("<III", fat, 0, 0x0FFFFF00 | MEDIA_DESCRIPTOR, EOC, EOC)

    with open(path, "r+b") as f:
        f.seek(0)
        f.write(bytes(geo.reserved_sectors * bps))
        for lba, data in ((0, boot), (FSINFO_SECTOR, fsinfo),
                          (BACKUP_BOOT_SECTOR, boot), (BACKUP_BOOT_SECTOR + 1, fsinfo)):
            f.seek(lba * bps)
            f.write(data)
        for i in range(geo.fat_count):
            f.seek(geo.fat_offset(i))
            f.write(fat)
        f.seek(geo.cluster_offset(geo.root_cluster))
        f.write(bytes(geo.cluster_size))
    return geo


# ══════════════════════════════════════════════════════════════════════════════
# DIRECTORY ENTRIES
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DirEntry:
    name: str
    short_name: bytes
    attr: int
    cluster: int
    size: int
    slots: tuple

    @property
    def is_dir(self) -> bool:
        return bool(self.attr & ATTR_DIRECTORY)


def lfn_checksum(short_name: bytes) -> int:
    s = 0
    for b in short_name:
        s = (((s & 1) << 7) + (s >> 1) + b) & 0xFF
    return s


def _short_entry(name11: bytes, attr: int, cluster: int, size: int, case: int = 0) -> bytes:
    e = bytearray(DIRENT_SIZE)
    e[0:11] = name11
    e[11] = attr
    e[12] = case
    struct.pack_into("<H", e, 16, DOS_EPOCH_DATE)
    struct.pack_into("<H", e, 18, DOS_EPOCH_DATE)
    struct.pack_into("<H", e, 20, (cluster >> 16) & 0xFFFF)
    struct.pack_into("<H", e, 24, DOS_EPOCH_DATE)
    struct.pack_into("<H", e, 26, cluster & 0xFFFF)
    struct.pack_into("<I", e, 28, size)
    return bytes(e)


def _lfn_entries(name: str, short_name: bytes) -> list:
    data = name.encode("utf-16-le")
    if (len(data) // 2) % LFN_CHARS:
        data += b"\x00\x00"
        while (len(data) // 2) % LFN_CHARS:
            data += b"\xFF\xFF"
    count = len(data) // (2 * LFN_CHARS)
    checksum = lfn_checksum(short_name)
    entries = []
    for i in range(count):
        part = data[i * 26:(i + 1) * 26]
        e = bytearray(DIRENT_SIZE)
        e[0] = (i + 1) | (LFN_LAST if i == count - 1 else 0)
        e[1:11]  = part[0:10]
        e[11] = ATTR_LFN
        e[13] = checksum
        e[14:26] = part[10:22]
        e[28:32] = part[22:26]
        entries.append(bytes(e))
    entries.reverse()
    return entries


def _lfn_text(raw: bytes) -> str:
    text = (raw[1:11] + raw[14:26] + raw[28:32]).decode("utf-16-le", "replace")
    return text.split("\x00", 1)[0]


def short_form(name: str):
    """(name11, case bits) when name is a plain 8.3 name in one case per
    part, else None."""
    base, dot, ext = name.partition(".")
    if not base or "." in ext or len(base) > 8 or len(ext) > 3 or (dot and not ext):
        return None
    case = 0
    for part, bit in ((base, CASE_LOWER_BASE), (ext, CASE_LOWER_EXT)):
        upper = part.upper()
        if len(upper) != len(part) or any(c not in _SHORT_CHARS for c in upper):
            return None
        if part != upper:
            if part != part.lower():
                return None
            case |= bit
    return (base.upper().ljust(8) + ext.upper().ljust(3)).encode("ascii"), case


def short_alias(name: str, taken) -> bytes:
    stem, ext = name, ""
    if "." in name.strip("."):
        stem, _, ext = name.rpartition(".")

    def clean(s):
        s = s.upper().replace(" ", "").replace(".", "")
        return "".join(c if c in _SHORT_CHARS else "_" for c in s)

    base = clean(stem) or "_"
    ext = clean(ext)[:3]
    for n in range(1, 1000000):
        tail = f"~{n}"
        cand = ((base[:8 - len(tail)] + tail).ljust(8) + ext.ljust(3)).encode("ascii")
        if cand not in taken:
            return cand
    raise ImageCapacityError(f"no short alias left for {name!r}", step="copy")


def _short_display(name11: bytes, case: int) -> str:
    raw = bytearray(name11)
    if raw[0] == 0x05:
        raw[0] = DELETED
    base = raw[:8].decode("latin-1").rstrip()
    ext  = raw[8:].decode("latin-1").rstrip()
    if case & CASE_LOWER_BASE:
        base = base.lower()
    if case & CASE_LOWER_EXT:
        ext = ext.lower()
    return f"{base}.{ext}" if ext else base


def is_valid_name(name: str) -> bool:
    return bool(name) and name not in (".", "..") and len(name.encode("utf-16-le")) <= 510 \
        and not any(c in _BAD_CHARS or ord(c) < 0x20 for c in name)


def encode_name(name: str, taken, attr: int, cluster: int, size: int) -> list:
    """Directory slots for one entry: LFN slots (if needed) then the short entry."""
    if not is_valid_name(name):
        raise ValueError(f"invalid FAT file name {name!r}")
    plain = short_form(name)
    if plain is not None and plain[0] not in taken:
        name11, case = plain
        return [_short_entry(name11, attr, cluster, size, case)]
    name11 = short_alias(name, taken)
    return _lfn_entries(name, name11) + [_short_entry(name11, attr, cluster, size)]


def parse_dir(data: bytes) -> list:
    entries = []
    parts, slots, checksum = [], [], None
    for slot in range(len(data) // DIRENT_SIZE):
        raw = data[slot * DIRENT_SIZE:(slot + 1) * DIRENT_SIZE]
        if raw[0] == 0x00:
            break
        if raw[0] == DELETED:
            parts, slots, checksum = [], [], None
            continue
        attr = raw[11]
        if attr == ATTR_LFN:
            if raw[0] & LFN_LAST:
                parts, slots, checksum = [], [], raw[13]
            parts.append(_lfn_text(raw))
            slots.append(slot)
            continue
        if attr & ATTR_VOLUME_ID:
            parts, slots, checksum = [], [], None
            continue
        name11 = bytes(raw[0:11])
        if parts and checksum == lfn_checksum(name11):
            name = "".join(reversed(parts))
            owned = tuple(slots) + (slot,)
        else:
            name = _short_display(name11, raw[12])
            owned = (slot,)
        hi, lo = struct.unpack_from("<H", raw, 20)[0], struct.unpack_from("<H", raw, 26)[0]
        size = struct.unpack_from("<I", raw, 28)[0]
        entries.append(DirEntry(name, name11, attr, (hi << 16) | lo, size, owned))
        parts, slots, checksum = [], [], None
    return entries


def _free_run(data: bytes, count: int):
    run_start, run_len = None, 0
    for slot in range(len(data) // DIRENT_SIZE):
        first = data[slot * DIRENT_SIZE]
        if first == 0x00:
            # everything from the end marker on is free
            start = run_start if run_start is not None else slot
            return start if len(data) // DIRENT_SIZE - start >= count else None
        if first == DELETED:
            if run_start is None:
                run_start = slot
            run_len += 1
            if run_len >= count:
                return run_start
        else:
            run_start, run_len = None, 0
    return None


def split_path(path: str) -> list:
    return [p for p in str(path).replace("\\", "/").split("/") if p and p != "."]


# ══════════════════════════════════════════════════════════════════════════════
# VOLUME
# ══════════════════════════════════════════════════════════════════════════════

class Fat32Volume:
    """A formatted FAT32 image opened for writing. The FAT is held in memory
    and written back (both copies plus FSInfo) by close()."""

    def __init__(self, path: Path, readonly: bool = False):
        self.path = Path(path)
        self.readonly = readonly
        self._f = open(self.path, "rb" if readonly else "r+b")
        try:
            self.geometry = Geometry.from_boot_sector(self._f.read(SECTOR_SIZE), str(self.path))
            g = self.geometry
            self._f.seek(g.fat_offset(0))
            self._fat = bytearray(self._f.read(g.fat_sectors * g.bytes_per_sector))
        except BaseException:
            self._f.close()
            raise
        self._last = g.cluster_count + 1
        values = struct.unpack_from(f"<{g.cluster_count}I", self._fat, 8)
        self.free_clusters = sum(1 for v in values if v & CLUSTER_MASK == FREE)
        self._hint = 2
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ── FAT ──────────────────────────────────────────────────────────────────

    def _get(self, cluster: int) -> int:
        return struct.unpack_from("<I", self._fat, cluster * 4)[0] & CLUSTER_MASK

    def _set(self, cluster: int, value: int):
        struct.pack_into("<I", self._fat, cluster * 4, value)

    def _allocate(self, count: int) -> list:
        if count == 0:
            return []
        if count > self.free_clusters:
            raise ImageCapacityError(f"{self.path}: need {count} clusters, only "
                                     f"{self.free_clusters} free", step="copy")
        found = []
        c = self._hint
        while len(found) < count:
            if self._get(c) == FREE:
                found.append(c)
            c = c + 1 if c < self._last else 2
        for a, b in zip(found, found[1:]):
            self._set(a, b)
        self._set(found[-1], EOC)
        self.free_clusters -= count
        self._hint = c
        return found

    def _chain(self, start: int) -> list:
        chain = []
        c = start
        while 2 <= c <= self._last:
            chain.append(c)
            if len(chain) > self.geometry.cluster_count:
                raise FormatError(f"{self.path}: cluster chain loop at {start}", step="open")
            c = self._get(c)
        return chain

    def _release(self, start: int):
        for c in self._chain(start):
            self._set(c, FREE)
            self.free_clusters += 1

    # ── data ─────────────────────────────────────────────────────────────────

    def _check_open(self):
        if self.closed:
            raise ValueError(f"{self.path}: image is sealed")
        if self.readonly:
            raise ValueError(f"{self.path}: opened read-only")

    def _read_cluster(self, cluster: int) -> bytes:
        self._f.seek(self.geometry.cluster_offset(cluster))
        return self._f.read(self.geometry.cluster_size)

    def _write_cluster(self, cluster: int, data: bytes):
        size = self.geometry.cluster_size
        self._f.seek(self.geometry.cluster_offset(cluster))
        self._f.write(data + bytes(size - len(data)) if len(data) < size else data)

    def _dir_data(self, cluster: int):
        chain = self._chain(cluster)
        return chain, bytearray(b"".join(self._read_cluster(c) for c in chain))

    def _write_slot(self, chain: list, slot: int, raw: bytes):
        per = self.geometry.cluster_size // DIRENT_SIZE
        self._f.seek(self.geometry.cluster_offset(chain[slot // per]) + (slot % per) * DIRENT_SIZE)
        self._f.write(raw)

    def _entries(self, cluster: int) -> list:
        _, data = self._dir_data(cluster)
        return [e for e in parse_dir(data) if e.short_name not in (DOT, DOTDOT)]

    def _lookup(self, cluster: int, name: str):
        want = name.casefold()
        for e in parse_dir(self._dir_data(cluster)[1]):
            if e.short_name in (DOT, DOTDOT):
                continue
            if e.name.casefold() == want or _short_display(e.short_name, 0).casefold() == want:
                return e
        return None

    def _add_entry(self, dir_cluster: int, name: str, attr: int, cluster: int, size: int):
        chain, data = self._dir_data(dir_cluster)
        taken = {e.short_name for e in parse_dir(data)}
        slots = encode_name(name, taken, attr, cluster, size)
        start = _free_run(data, len(slots))
        while start is None:
            new = self._allocate(1)[0]
            self._set(chain[-1], new)
            self._write_cluster(new, b"")
            chain.append(new)
            data += bytes(self.geometry.cluster_size)
            start = _free_run(data, len(slots))
        for i, raw in enumerate(slots):
            self._write_slot(chain, start + i, raw)

    def _growth(self, dir_cluster: int, name: str, attr: int, replacing: DirEntry = None) -> int:
        """Clusters the directory must grow by to take name. Validates name."""
        _, data = self._dir_data(dir_cluster)
        if replacing is not None:
            for slot in replacing.slots:
                data[slot * DIRENT_SIZE] = DELETED
        taken = {e.short_name for e in parse_dir(data)}
        count = len(encode_name(name, taken, attr, 0, 0))
        grow = 0
        while _free_run(data + bytes(grow * self.geometry.cluster_size), count) is None:
            grow += 1
        return grow

    def _remove_entry(self, dir_cluster: int, entry: DirEntry):
        chain = self._chain(dir_cluster)
        for slot in entry.slots:
            self._write_slot(chain, slot, bytes([DELETED]))
        if entry.cluster:
            self._release(entry.cluster)

    def _walk(self, parts: list) -> int:
        cluster = self.geometry.root_cluster
        for i, part in enumerate(parts):
            e = self._lookup(cluster, part)
            if e is None:
                raise FileNotFoundError(f"{self.path}::/{'/'.join(parts[:i + 1])}")
            if not e.is_dir:
                raise NotADirectoryError(f"{self.path}::/{'/'.join(parts[:i + 1])}")
            cluster = e.cluster or self.geometry.root_cluster
        return cluster

    # ── public ───────────────────────────────────────────────────────────────

    def mkdir(self, path: str) -> int:
        """Create path and any missing parents; existing directories are left
        alone. Returns the directory's first cluster."""
        self._check_open()
        root = self.geometry.root_cluster
        cluster = root
        parts = split_path(path)
        for i, part in enumerate(parts):
            e = self._lookup(cluster, part)
            if e is not None:
                if not e.is_dir:
                    raise NotADirectoryError(f"{self.path}::/{'/'.join(parts[:i + 1])}")
                cluster = e.cluster or root
                continue
            needed = 1 + self._growth(cluster, part, ATTR_DIRECTORY)
            if needed > self.free_clusters:
                raise ImageCapacityError(f"{self.path}::/{'/'.join(parts[:i + 1])}: need {needed} "
                                         f"clusters, only {self.free_clusters} free", step="mkdir")
            new = self._allocate(1)[0]
            block = _short_entry(DOT, ATTR_DIRECTORY, new, 0) + \
                _short_entry(DOTDOT, ATTR_DIRECTORY, 0 if cluster == root else cluster, 0)
            self._write_cluster(new, block)
            self._add_entry(cluster, part, ATTR_DIRECTORY, new, 0)
            cluster = new
        return cluster

    def write_file(self, path: str, src, size: int):
        """Stream size bytes from the binary file object src into path,
        replacing any file already there."""
        self._check_open()
        parts = split_path(path)
        if not parts:
            raise IsADirectoryError(f"{self.path}::/")
        if size > MAX_FILE_SIZE:
            raise ImageCapacityError(f"{path}: {size} bytes exceeds the FAT32 file size limit",
                                     step="copy")
        parent = self._walk(parts[:-1])
        name = parts[-1]
        cs = self.geometry.cluster_size
        needed = math.ceil(size / cs)

        old = self._lookup(parent, name)
        reclaim = 0
        if old is not None:
            if old.is_dir:
                raise IsADirectoryError(f"{self.path}::/{'/'.join(parts)}")
            reclaim = len(self._chain(old.cluster)) if old.cluster else 0
        grow = self._growth(parent, name, ATTR_ARCHIVE, old)
        if needed + grow > self.free_clusters + reclaim:
            raise ImageCapacityError(f"{path}: needs {(needed + grow) * cs} bytes, "
                                     f"{(self.free_clusters + reclaim) * cs} free", step="copy")
        if old is not None:
            self._remove_entry(parent, old)

        chain = self._allocate(needed)
        remaining = size
        for c in chain:
            want = min(cs, remaining)
            chunk = src.read(want)
            if len(chunk) != want:
                raise OSError(f"{path}: source ended {remaining - len(chunk)} bytes early")
            self._write_cluster(c, chunk)
            remaining -= want
        self._add_entry(parent, name, ATTR_ARCHIVE, chain[0] if chain else 0, size)

    def listdir(self, path: str = "/") -> list:
        return self._entries(self._walk(split_path(path)))

    def stat(self, path: str):
        parts = split_path(path)
        if not parts:
            return None
        try:
            parent = self._walk(parts[:-1])
        except (FileNotFoundError, NotADirectoryError):
            return None
        return self._lookup(parent, parts[-1])

    def read_file(self, path: str) -> bytes:
        e = self.stat(path)
        if e is None:
            raise FileNotFoundError(f"{self.path}::/{path.lstrip('/')}")
        if e.is_dir:
            raise IsADirectoryError(f"{self.path}::/{path.lstrip('/')}")
        if not e.cluster:
            return b""
        return b"".join(self._read_cluster(c) for c in self._chain(e.cluster))[:e.size]

    def flush(self):
        self._check_open()
        g = self.geometry
        for i in range(g.fat_count):
            self._f.seek(g.fat_offset(i))
            self._f.write(self._fat)
        fsinfo = _fsinfo(self.free_clusters, self._hint, g.bytes_per_sector)
        for lba in (FSINFO_SECTOR, BACKUP_BOOT_SECTOR + 1):
            self._f.seek(lba * g.bytes_per_sector)
            self._f.write(fsinfo)
        self._f.flush()

    def close(self):
        if self.closed:
            return
        try:
            if not self.readonly:
                self.flush()
        finally:
            self._f.close()
            self.closed = True
