"""
Shared fixtures: synthetic ELF executables, a kernel tree with per-board
linker scripts, fake toolchain programs and sparse FAT32 images.
"""
import os
import stat
import struct
from pathlib import Path

import pytest

from imgforge.fat32 import format_volume
from imgforge.matrix import ARCHES, BOARDS

EM_RISCV = 243
PT_LOAD = 1
PT_NOTE = 4
DEBUG_TAIL = b"\x00.symtab\x00.strtab\x00.debug_info\x00" * 16
IMAGE_BYTES = 512 * 131072


def make_elf(segments, e_type=2, machine=EM_RISCV, notes=True) -> bytes:
    """ELF64 LE executable. segments: [(paddr, payload, bss_size), ...] in
    program-header order. Payloads are stored back to back from 0x1000 and
    followed by fake symbol/debug bytes."""
    phoff = 64
    data_off = 0x1000
    phdrs = bytearray()
    cur = data_off
    for paddr, payload, bss in segments:
        phdrs += struct.pack("<IIQQQQQQ", PT_LOAD, 5, cur, paddr, paddr,
                             len(payload), len(payload) + bss, 0x1000)
        cur += len(payload)
    if notes:
        phdrs += struct.pack("<IIQQQQQQ", PT_NOTE, 4, 0x200, 0, 0, 0x20, 0x20, 4)
    phnum = len(phdrs) // 56

    header = bytearray(64)
    header[0:4] = b"\x7fELF"
    header[4], header[5], header[6] = 2, 1, 1
    entry = segments[0][0] if segments else 0
    struct.pack_into("<HHIQQQIHHHHHH", header, 16, e_type, machine, 1, entry,
                     phoff, 0, 0, 64, 56, phnum, 64, 0, 0)
    blob = bytearray(header) + phdrs
    blob += bytes(data_off - len(blob))
    for _, payload, _ in segments:
        blob += payload
    blob += DEBUG_TAIL
    return bytes(blob)


def write_script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def kernel_elf(tmp_path):
    text = bytes(range(256)) * 3
    data = b"DATA" * 64
    path = tmp_path / "os"
    path.write_bytes(make_elf([(0x80200000, text, 0),
                               (0x80200000 + len(text), data, 0x400)]))
    return path, text + data


@pytest.fixture
def kernel_tree(tmp_path):
    kernel = tmp_path / "os"
    for board, spec in BOARDS.items():
        d = kernel / ARCHES[spec.arch].linker_dir
        d.mkdir(parents=True, exist_ok=True)
        (d / spec.linker_script).write_text(f"/* {board} */\nOUTPUT_ARCH({spec.arch})\n")
    return kernel


@pytest.fixture
def fake_cargo(tmp_path):
    """A cargo stand-in that records its argv and LOG, and drops an ELF at
    the path it was asked to build."""
    elf = tmp_path / "fixture.elf"
    elf.write_bytes(make_elf([(0x80200000, b"\x13\x00\x00\x00" * 64, 0)]))
    script = write_script(tmp_path / "toolbin" / "cargo", f"""
echo "$@" > cargo-args.txt
echo "$LOG" > cargo-log.txt
triple=""
mode=debug
while [ $# -gt 0 ]; do
  case "$1" in
    --target) triple="$2"; shift ;;
    --release) mode=release ;;
  esac
  shift
done
mkdir -p "target/$triple/$mode"
cp "{elf}" "target/$triple/$mode/os"
""")
    return script


@pytest.fixture
def fat_image(tmp_path):
    path = tmp_path / "vol.img"
    with open(path, "wb") as f:
        f.truncate(IMAGE_BYTES)
    format_volume(path)
    return path


@pytest.fixture
def host_files(tmp_path):
    d = tmp_path / "host"
    d.mkdir()

    def make(name, data):
        p = d / name
        p.write_bytes(data)
        return p
    return make


@pytest.fixture(autouse=True)
def _no_log_file():
    from imgforge import util
    util.set_log_file(None)
    yield
    util.set_log_file(None)


@pytest.fixture
def posix_only():
    if os.name != "posix":
        pytest.skip("needs /bin/sh")
