# imgforge/emulator.py — per-board QEMU command line and synchronous launch

import subprocess
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError
from .util import log


@dataclass(frozen=True)
class Machine:
    qemu: str
    args: tuple
    needs_bootloader: bool = False


# {kernel} {image} {bootloader} are filled in per launch
MACHINES = {
    "rvqemu": Machine("qemu-system-riscv64", (
        "-machine", "virt", "-nographic", "-m", "128M",
        "-bios", "{bootloader}",
        "-kernel", "{kernel}",
        "-drive", "file={image},if=none,format=raw,id=x0",
        "-device", "virtio-blk-device,drive=x0,bus=virtio-mmio-bus.0",
    )),
    "laqemu": Machine("qemu-system-loongarch64", (
        "-M", "virt", "-m", "1G", "-nographic", "-smp", "1",
        "-bios", "{bootloader}",
        "-kernel", "{kernel}",
        "-drive", "file={image},if=none,format=raw,id=x0",
        "-device", "virtio-blk-pci,drive=x0",
        "-no-reboot",
    )),
    "la2k1000": Machine("qemu-system-loongarch64", (
        "-M", "ls2k", "-m", "1024",
        "-serial", "stdio", "-serial", "vc",
        "-drive", "if=pflash,file={bootloader}",
        "-device", "usb-kbd,bus=usb-bus.0",
        "-device", "usb-tablet,bus=usb-bus.0",
        "-device", "usb-storage,drive=udisk",
        "-drive", "if=none,id=udisk,format=raw,file={kernel}",
        "-net", "nic", "-net", "user,net=10.0.2.0/24",
        "-hda", "{image}",
    ), needs_bootloader=True),
}


def emulator_command(board: str, kernel: Path, image: Path, bootloader: Path = None,
                     qemu: str = None) -> list:
    machine = MACHINES.get(board)
    if machine is None:
        raise ConfigError(f"no emulator profile for board {board!r}", step="run", target=board)
    if bootloader is None and machine.needs_bootloader:
        raise ConfigError(f"board {board!r} needs a bootloader image", step="run", target=board)

    args = list(machine.args)
    if bootloader is None:
        # fall back to the emulator's default firmware
        i = args.index("-bios")
        del args[i:i + 2]
    values = {"kernel": kernel, "image": image, "bootloader": bootloader}
    return [qemu or machine.qemu] + [a.format(**values) for a in args]


def launch(board: str, kernel: Path, image: Path, bootloader: Path = None,
           qemu: str = None, extra=()) -> int:
    cmd = emulator_command(board, kernel, image, bootloader, qemu) + list(extra)
    log(f"=== RUNNING {cmd[0]} ({board}) ===")
    log(f"  > {' '.join(cmd)}")
    try:
        return subprocess.run(cmd).returncode
    except FileNotFoundError:
        raise ConfigError(f"{cmd[0]} not found", step="run", target=board) from None
