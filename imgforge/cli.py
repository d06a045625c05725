#!/usr/bin/env python3
# imgforge/cli.py — build / fs / run / clean / setup / inspect
#
# Usage:
#   imgforge build --arch riscv64 --board rvqemu          # kernel + fs.img
#   imgforge build --arch loongarch64 --board la2k1000 --mode debug
#   imgforge fs --arch riscv64                            # only fs.img
#   imgforge run --board rvqemu                           # QEMU with kernel-qemu + fs.img
#   imgforge clean
#   imgforge setup --toolchain-dir /opt/riscv/bin --testsuite-dir test/.../user
#   imgforge inspect fs-img/fs.img

import argparse
import shutil
import sys
from pathlib import Path

from .config import ProjectLayout, ToolchainConfig, load_settings, apply_settings
from .diagnose import describe
from .emulator import MACHINES, launch
from .errors import BuildError, ConfigError
from .fsimage import BLOCK_COUNT, BLOCK_SIZE, assemble_image, summary_lines
from .kernel import KernelImageBuilder, deploy
from .matrix import ARCHES, BOARDS, MODES, BuildMatrixResolver, BuildTarget
from .util import human, log, reset_logs, set_log_file


def banner():
    print()
    print("╔══════════════════════════════════════════════════════╗")
    print("║         IMGFORGE — kernel + FAT32 image builder      ║")
    print("╚══════════════════════════════════════════════════════╝")
    print()


def summary(layout: ProjectLayout, artifact=None, report=None):
    print()
    print("╔══════════════════════════════════════════════════════════════════════╗")
    print("║                          BUILD ARTIFACTS                             ║")
    print("╠══════════════════════════════════════════════════════════════════════╣")
    if artifact is not None:
        print(f"║  ✓ ELF   {artifact.executable}")
        print(f"║  ✓ BIN   {artifact.raw_binary}  ({artifact.size} bytes)")
        if layout.deploy_path.exists():
            print(f"║  ✓ BOOT  {layout.deploy_path}")
    if report is not None:
        path = report.image.path
        print(f"║  ✓ FS    {path}  ({human(path)})")
        for line in summary_lines(report):
            print(f"║    {line}")
    print("╚══════════════════════════════════════════════════════════════════════╝")
    print()


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def _testsuite_dir(args, layout: ProjectLayout, settings: dict) -> Path:
    base = args.testsuite_dir or settings.get("TESTSUITE_DIR")
    return Path(base) / args.arch if base else layout.testsuite_dir(args.arch)


def _assemble(args, layout: ProjectLayout, settings: dict):
    arch = ARCHES.get(args.arch)
    if arch is None:
        raise ConfigError(f"unknown architecture {args.arch!r}", step="fs")
    return assemble_image(
        args.image or layout.fs_image,
        layout.user_output(arch.triple, args.mode),
        layout.user_sources,
        _testsuite_dir(args, layout, settings),
        block_size=args.block_size,
        block_count=args.block_count,
        sectors_per_cluster=args.sectors_per_cluster,
    )


def cmd_build(args, layout: ProjectLayout) -> int:
    reset_logs()
    banner()
    settings = load_settings(layout.settings)
    target = BuildTarget(args.arch, args.board, args.mode, tuple(args.features))
    toolchain = ToolchainConfig.from_settings(
        settings, bin_dir=args.toolchain_dir, cargo=args.cargo,
        objcopy=args.objcopy, log_level=args.log)
    builder = KernelImageBuilder(BuildMatrixResolver(layout.kernel_dir), toolchain)
    try:
        artifact = builder.build(target)
        if not args.no_deploy:
            deploy(artifact, layout.deploy_path)
        report = None if args.no_fs else _assemble(args, layout, settings)
    except BuildError as e:
        if e.target is None:
            e.target = target
        raise
    summary(layout, artifact, report)
    return 0


def cmd_fs(args, layout: ProjectLayout) -> int:
    reset_logs()
    report = _assemble(args, layout, load_settings(layout.settings))
    summary(layout, report=report)
    return 0


def cmd_run(args, layout: ProjectLayout) -> int:
    kernel = Path(args.kernel) if args.kernel else layout.deploy_path
    image = Path(args.image) if args.image else layout.fs_image
    for p in (kernel, image):
        if not p.exists():
            raise ConfigError(f"{p} not found — run `imgforge build` first", step="run", target=args.board)
    bootloader = Path(args.bootloader) if args.bootloader else None
    if bootloader is None:
        cand = layout.bootloader_dir / f"{args.board}.bin"
        bootloader = cand if cand.exists() else None
    return launch(args.board, kernel, image, bootloader, qemu=args.qemu)


def cmd_clean(args, layout: ProjectLayout) -> int:
    log("=== CLEANING ===")
    for d in (layout.build_dir, layout.fs_image.parent,
              layout.kernel_dir / "target", layout.user_dir / "target"):
        if d.exists():
            shutil.rmtree(d)
            log(f"[OK]    removed {d}")
    if layout.deploy_path.exists():
        layout.deploy_path.unlink()
        log(f"[OK]    removed {layout.deploy_path}")
    log("[OK]    Clean complete")
    return 0


def cmd_setup(args, layout: ProjectLayout) -> int:
    values = {}
    if args.toolchain_dir:
        values["TOOLCHAIN_DIR"] = str(Path(args.toolchain_dir).resolve())
    if args.testsuite_dir:
        values["TESTSUITE_DIR"] = str(Path(args.testsuite_dir).resolve())
    for item in args.set:
        key, sep, value = item.partition("=")
        if not sep:
            raise ConfigError(f"expected KEY=VALUE, got {item!r}", step="setup")
        values[key] = value
    if not values:
        raise ConfigError("nothing to set", step="setup")
    log(f"=== UPDATING {layout.settings.name} ===")
    changed = apply_settings(layout.settings, values)
    log(f"[OK]    {len(changed)} setting(s) changed")
    return 0


def cmd_inspect(args, layout: ProjectLayout) -> int:
    for line in describe(Path(args.image)):
        print(line)
    return 0


# ══════════════════════════════════════════════════════════════════════════════
# MAIN
# ══════════════════════════════════════════════════════════════════════════════

def _fs_options(p: argparse.ArgumentParser):
    p.add_argument("--mode", choices=MODES, default="release")
    p.add_argument("--image", type=Path, help="output image (default fs-img/fs.img)")
    p.add_argument("--testsuite-dir", type=Path)
    p.add_argument("--block-size", type=int, default=BLOCK_SIZE)
    p.add_argument("--block-count", type=int, default=BLOCK_COUNT)
    p.add_argument("--sectors-per-cluster", type=int, default=1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="imgforge")
    parser.add_argument("--root", type=Path, default=Path("."), help="project root")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("build", help="compile the kernel, extract kernel.bin, assemble fs.img")
    p.add_argument("--arch", required=True, choices=sorted(ARCHES))
    p.add_argument("--board", required=True, choices=sorted(BOARDS))
    p.add_argument("--features", nargs="*", default=[])
    p.add_argument("--toolchain-dir", type=Path)
    p.add_argument("--cargo", default="cargo")
    p.add_argument("--objcopy")
    p.add_argument("--log", help="kernel LOG level passed to the build")
    p.add_argument("--no-deploy", action="store_true")
    p.add_argument("--no-fs", action="store_true")
    _fs_options(p)
    p.set_defaults(func=cmd_build)

    p = sub.add_parser("fs", help="assemble fs.img only")
    p.add_argument("--arch", required=True, choices=sorted(ARCHES))
    _fs_options(p)
    p.set_defaults(func=cmd_fs)

    p = sub.add_parser("run", help="start QEMU with the deployed kernel and fs.img")
    p.add_argument("--board", required=True, choices=sorted(MACHINES))
    p.add_argument("--kernel", type=Path)
    p.add_argument("--image", type=Path)
    p.add_argument("--bootloader", type=Path)
    p.add_argument("--qemu")
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("clean", help="remove build outputs")
    p.set_defaults(func=cmd_clean)

    p = sub.add_parser("setup", help="record toolchain/test-suite locations")
    p.add_argument("--toolchain-dir", type=Path)
    p.add_argument("--testsuite-dir", type=Path)
    p.add_argument("--set", action="append", default=[], metavar="KEY=VALUE")
    p.set_defaults(func=cmd_setup)

    p = sub.add_parser("inspect", help="describe a FAT32 image")
    p.add_argument("image", type=Path)
    p.set_defaults(func=cmd_inspect)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    layout = ProjectLayout(args.root)
    set_log_file(layout.build_log if args.command in ("build", "fs") else None)
    try:
        return args.func(args, layout)
    except BuildError as e:
        log(f"[ERROR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
