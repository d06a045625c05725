# imgforge/elf.py — read PT_LOAD segments and lay them out as a flat binary
#
# The flat layout matches `objcopy -O binary`: byte 0 is the lowest physical
# load address, segments are placed at (paddr - base), gaps are zero, and
# only the file-backed part of each segment is emitted (no trailing .bss).

import struct
from dataclasses import dataclass
from pathlib import Path

from .errors import ExtractionError

ELF_MAGIC = b"\x7fELF"
ELFCLASS32 = 1
ELFCLASS64 = 2
ET_EXEC = 2
PT_LOAD = 1


@dataclass(frozen=True)
class Segment:
    paddr: int
    vaddr: int
    offset: int
    filesz: int
    memsz: int


def load_segments(data: bytes, name: str = "<elf>") -> list:
    """Return the non-empty PT_LOAD segments of an ELF executable, sorted by
    physical address."""
    if len(data) < 16 or data[:4] != ELF_MAGIC:
        raise ExtractionError(f"{name}: not an ELF file", step="extract")

    ei_class, ei_data = data[4], data[5]
    if ei_class not in (ELFCLASS32, ELFCLASS64):
        raise ExtractionError(f"{name}: bad ELF class {ei_class}", step="extract")
    if ei_data not in (1, 2):
        raise ExtractionError(f"{name}: bad ELF byte order {ei_data}", step="extract")
    bo = "<" if ei_data == 1 else ">"

    try:
        if ei_class == ELFCLASS64:
            (e_type, e_machine, e_version, e_entry, e_phoff, e_shoff,
             e_flags, e_ehsize, e_phentsize, e_phnum, e_shentsize, e_shnum,
             e_shstrndx) = struct.unpack_from(bo + "HHIQQQIHHHHHH", data, 16)
        else:
            (e_type, e_machine, e_version, e_entry, e_phoff, e_shoff,
             e_flags, e_ehsize, e_phentsize, e_phnum, e_shentsize, e_shnum,
             e_shstrndx) = struct.unpack_from(bo + "HHIIIIIHHHHHH", data, 16)
    except struct.error:
        raise ExtractionError(f"{name}: truncated ELF header", step="extract") from None

    if e_type != ET_EXEC:
        raise ExtractionError(f"{name}: not a linked executable (e_type={e_type})", step="extract")
    if e_phnum == 0:
        raise ExtractionError(f"{name}: no program headers", step="extract")
    ph_size = 56 if ei_class == ELFCLASS64 else 32
    if e_phentsize < ph_size or e_phoff + e_phnum * e_phentsize > len(data):
        raise ExtractionError(f"{name}: program header table out of bounds", step="extract")

    segments = []
    for i in range(e_phnum):
        off = e_phoff + i * e_phentsize
        if ei_class == ELFCLASS64:
            (p_type, p_flags, p_offset, p_vaddr, p_paddr, p_filesz, p_memsz,
             p_align) = struct.unpack_from(bo + "IIQQQQQQ", data, off)
        else:
            (p_type, p_offset, p_vaddr, p_paddr, p_filesz, p_memsz,
             p_flags, p_align) = struct.unpack_from(bo + "IIIIIIII", data, off)
        if p_type != PT_LOAD or p_filesz == 0:
            continue
        if p_offset + p_filesz > len(data):
            raise ExtractionError(f"{name}: segment {i} extends past end of file", step="extract")
        segments.append(Segment(p_paddr, p_vaddr, p_offset, p_filesz, p_memsz))

    if not segments:
        raise ExtractionError(f"{name}: no loadable segments", step="extract")
    segments.sort(key=lambda s: s.paddr)
    return segments


def flatten(data: bytes, name: str = "<elf>") -> bytes:
    segments = load_segments(data, name)
    base = segments[0].paddr
    end  = max(s.paddr + s.filesz for s in segments)
    flat = bytearray(end - base)
    for s in segments:
        dst = s.paddr - base
        flat[dst:dst + s.filesz] = data[s.offset:s.offset + s.filesz]
    return bytes(flat)


def flatten_file(path: Path) -> bytes:
    path = Path(path)
    if not path.is_file():
        raise ExtractionError(f"{path}: linked executable not found", step="extract")
    return flatten(path.read_bytes(), str(path))
