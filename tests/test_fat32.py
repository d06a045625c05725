import io
import struct

import pytest

from conftest import IMAGE_BYTES
from imgforge.errors import FormatError, ImageCapacityError
from imgforge.fat32 import (MIN_CLUSTERS, Fat32Volume, compute_geometry,
                            parse_dir, short_alias, short_form)


# ── geometry / format ─────────────────────────────────────────────────────────

def test_default_geometry_meets_fat32_minimum():
    geo = compute_geometry(IMAGE_BYTES)
    assert geo.total_sectors == 131072
    assert geo.cluster_count >= MIN_CLUSTERS
    assert geo.fat_sectors * 512 >= (geo.cluster_count + 2) * 4


def test_undersized_cluster_count_fails_instead_of_degrading():
    with pytest.raises(FormatError) as exc:
        compute_geometry(IMAGE_BYTES, sectors_per_cluster=8)
    assert isinstance(exc.value, ImageCapacityError)
    assert "65525" in str(exc.value)


def test_small_image_is_rejected():
    with pytest.raises(FormatError):
        compute_geometry(32 * 1024 * 1024)


@pytest.mark.parametrize("size, spc", [(IMAGE_BYTES + 1, 1), (IMAGE_BYTES, 3), (0, 1)])
def test_bad_format_parameters(size, spc):
    with pytest.raises(FormatError):
        compute_geometry(size, spc)


def test_boot_sector_layout(fat_image):
    raw = fat_image.read_bytes()[:8 * 512]
    boot = raw[:512]
    assert boot[510:512] == b"\x55\xAA"
    assert boot[82:90] == b"FAT32   "
    assert struct.unpack_from("<H", boot, 11)[0] == 512
    assert struct.unpack_from("<I", boot, 32)[0] == 131072
    assert struct.unpack_from("<I", boot, 44)[0] == 2
    assert raw[6 * 512:7 * 512] == boot
    assert raw[512:516] == b"RRaA"


def test_format_missing_image(tmp_path):
    from imgforge.fat32 import format_volume
    with pytest.raises(FormatError):
        format_volume(tmp_path / "absent.img")


def test_open_rejects_unformatted_image(tmp_path):
    p = tmp_path / "blank.img"
    p.write_bytes(bytes(4096))
    with pytest.raises(FormatError):
        Fat32Volume(p)


# ── names ─────────────────────────────────────────────────────────────────────

def test_short_form_keeps_single_case_names():
    assert short_form("BRK") == (b"BRK        ", 0)
    assert short_form("brk") == (b"BRK        ", 0x08)
    assert short_form("run.sh") == (b"RUN     SH ", 0x18)
    assert short_form("Mixed") is None
    assert short_form("test_echo") is None
    assert short_form("a.b.c") is None


def test_short_alias_is_unique():
    first = short_alias("test_echo", set())
    assert first == b"TEST_E~1   "
    assert short_alias("test_echo", {first}) == b"TEST_E~2   "
    assert short_alias("archive.tar.gz", set()) == b"ARCHIV~1GZ "


# ── directories and files ────────────────────────────────────────────────────

def test_mkdir_is_idempotent(fat_image):
    with Fat32Volume(fat_image) as vol:
        first = vol.mkdir("bin")
        free = vol.free_clusters
        assert vol.mkdir("/bin/") == first
        assert vol.free_clusters == free
        assert [e.name for e in vol.listdir("/")] == ["bin"]


def test_mkdir_creates_parents(fat_image):
    with Fat32Volume(fat_image) as vol:
        vol.mkdir("usr/local/bin")
        assert vol.stat("usr/local").is_dir
        assert vol.listdir("usr/local/bin") == []


def test_mkdir_over_file(fat_image):
    with Fat32Volume(fat_image) as vol:
        vol.write_file("/busybox", io.BytesIO(b"x"), 1)
        with pytest.raises(NotADirectoryError):
            vol.mkdir("busybox")


def test_write_and_read_back(fat_image):
    payload = bytes(range(256)) * 12 + b"tail"
    with Fat32Volume(fat_image) as vol:
        vol.mkdir("bin")
        vol.write_file("/bin/getpid", io.BytesIO(payload), len(payload))
        vol.write_file("/empty", io.BytesIO(b""), 0)

    with Fat32Volume(fat_image, readonly=True) as vol:
        assert vol.read_file("/bin/getpid") == payload
        assert vol.read_file("/empty") == b""
        e = vol.stat("/bin/GETPID")
        assert e.name == "getpid" and e.size == len(payload)


def test_long_names_survive(fat_image):
    with Fat32Volume(fat_image) as vol:
        vol.write_file("/test_echo", io.BytesIO(b"echo"), 4)
        vol.write_file("/test_echo_long_argument_list", io.BytesIO(b"x"), 1)
        names = [e.name for e in vol.listdir()]
        shorts = [e.short_name for e in vol.listdir()]
    assert names == ["test_echo", "test_echo_long_argument_list"]
    assert shorts == [b"TEST_E~1   ", b"TEST_E~2   "]


def test_replacing_a_file_frees_its_clusters(fat_image):
    with Fat32Volume(fat_image) as vol:
        vol.write_file("/init", io.BytesIO(b"a" * 5000), 5000)
        free = vol.free_clusters
        vol.write_file("/INIT", io.BytesIO(b"b" * 100), 100)
        assert vol.free_clusters == free + 9
        assert [e.name for e in vol.listdir()] == ["INIT"]
        assert vol.read_file("/init") == b"b" * 100


def test_capacity_checked_before_writing(fat_image):
    with Fat32Volume(fat_image) as vol:
        too_big = (vol.free_clusters + 1) * vol.geometry.cluster_size
        free = vol.free_clusters
        with pytest.raises(ImageCapacityError):
            vol.write_file("/huge", io.BytesIO(b""), too_big)
        assert vol.free_clusters == free
        assert vol.stat("/huge") is None


def test_directory_grows_past_one_cluster(fat_image):
    names = [f"syscall_test_{i:03d}" for i in range(40)]
    with Fat32Volume(fat_image) as vol:
        vol.mkdir("bin")
        for n in names:
            vol.write_file(f"/bin/{n}", io.BytesIO(n.encode()), len(n))
    with Fat32Volume(fat_image, readonly=True) as vol:
        assert [e.name for e in vol.listdir("bin")] == names
        assert vol.read_file("/bin/syscall_test_039") == b"syscall_test_039"


def test_missing_parent(fat_image):
    with Fat32Volume(fat_image) as vol:
        with pytest.raises(FileNotFoundError):
            vol.write_file("/nope/file", io.BytesIO(b"x"), 1)


@pytest.mark.parametrize("name", ["a:b", "what?", 'say"hi"', "pipe|name", "ctrl\x01"])
def test_invalid_name_rejected_before_allocating(fat_image, name):
    with Fat32Volume(fat_image) as vol:
        free = vol.free_clusters
        with pytest.raises(ValueError, match="invalid FAT file name"):
            vol.write_file(f"/{name}", io.BytesIO(b"x" * 700), 700)
        assert vol.free_clusters == free
        assert [e.name for e in vol.listdir()] == []


def full_bin(vol):
    """Fill /bin's only cluster with short entries and leave one free cluster."""
    vol.mkdir("bin")
    per = vol.geometry.cluster_size // 32
    for i in range(per - 2):
        vol.write_file(f"/bin/f{i:02d}", io.BytesIO(b""), 0)
    vol._allocate(vol.free_clusters - 1)
    assert vol.free_clusters == 1


def test_capacity_check_counts_directory_growth(fat_image):
    with Fat32Volume(fat_image) as vol:
        full_bin(vol)
        with pytest.raises(ImageCapacityError):
            vol.write_file("/bin/data", io.BytesIO(b"payload"), 7)
        assert vol.free_clusters == 1
        assert vol.stat("/bin/data") is None

        vol.write_file("/bin/empty", io.BytesIO(b""), 0)
        assert vol.free_clusters == 0
        assert vol.stat("/bin/empty").size == 0


def test_mkdir_capacity_counts_directory_growth(fat_image):
    with Fat32Volume(fat_image) as vol:
        full_bin(vol)
        with pytest.raises(ImageCapacityError):
            vol.mkdir("bin/sub")
        assert vol.free_clusters == 1
        assert vol.stat("/bin/sub") is None


def test_sealed_volume_rejects_writes(fat_image):
    vol = Fat32Volume(fat_image)
    vol.close()
    with pytest.raises(ValueError):
        vol.mkdir("bin")


def test_both_fat_copies_match(fat_image):
    with Fat32Volume(fat_image) as vol:
        vol.write_file("/a", io.BytesIO(b"a" * 3000), 3000)
        geo = vol.geometry
    raw = fat_image.read_bytes()
    size = geo.fat_sectors * 512
    fat1 = raw[geo.fat_offset(0):geo.fat_offset(0) + size]
    fat2 = raw[geo.fat_offset(1):geo.fat_offset(1) + size]
    assert fat1 == fat2
    root = raw[geo.cluster_offset(2):geo.cluster_offset(2) + 512]
    assert [e.name for e in parse_dir(root)] == ["a"]
