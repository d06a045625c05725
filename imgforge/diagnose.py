# imgforge/diagnose.py — read back a FAT32 image: boot sector, geometry, tree

from pathlib import Path

from .errors import FormatError
from .fat32 import SECTOR_SIZE, Fat32Volume, Geometry


def hexdump(data, offset=0, length=64) -> list:
    lines = []
    for i in range(0, min(len(data), length), 16):
        hex_str = ' '.join(f'{b:02x}' for b in data[i:i+16])
        ascii_str = ''.join(chr(b) if 32 <= b < 127 else '.' for b in data[i:i+16])
        lines.append(f"{offset+i:08x}  {hex_str:<48}  {ascii_str}")
    return lines


def walk(vol: Fat32Volume, path: str = "/"):
    """Yield (image path, DirEntry) depth-first, directories before their
    contents, in on-disk order."""
    for e in vol.listdir(path):
        child = path.rstrip("/") + "/" + e.name
        yield child, e
        if e.is_dir:
            yield from walk(vol, child)


def describe(image: Path) -> list:
    image = Path(image)
    if not image.is_file():
        raise FormatError(f"{image} does not exist", step="diagnose")

    with open(image, "rb") as f:
        boot = f.read(SECTOR_SIZE)
    out = [f"{image}  ({image.stat().st_size} bytes)", "", "Boot sector:"]
    out += hexdump(boot, 0, 96)
    if boot[510:512] == b"\x55\xAA":
        out.append("✓ boot signature 0x55AA")
    else:
        out.append(f"✗ bad boot signature: {boot[510:512].hex()}")

    geo = Geometry.from_boot_sector(boot, str(image))
    out += [
        "",
        f"sectors      {geo.total_sectors} × {geo.bytes_per_sector}",
        f"cluster      {geo.sectors_per_cluster} sectors ({geo.cluster_size} bytes)",
        f"FATs         {geo.fat_count} × {geo.fat_sectors} sectors",
        f"data start   LBA {geo.data_start}",
        f"clusters     {geo.cluster_count}",
        "",
    ]
    with Fat32Volume(image, readonly=True) as vol:
        out.append(f"free         {vol.free_clusters} clusters")
        out.append("")
        for path, e in walk(vol):
            if e.is_dir:
                out.append(f"  {path}/")
            else:
                out.append(f"  {path:<40} {e.size:>10}")
    return out
