import pytest

from imgforge.cli import main
from imgforge.config import load_settings
from imgforge.fat32 import Fat32Volume

TRIPLE = "riscv64gc-unknown-none-elf"


@pytest.fixture
def project(tmp_path, kernel_tree):
    root = tmp_path
    src = root / "user/src/bin"
    out = root / "user/target" / TRIPLE / "release"
    suite = root / "test/testsuits-for-oskernel/riscv-syscalls-testing/user/riscv64"
    for d in (src, out, suite):
        d.mkdir(parents=True)
    (src / "initproc.rs").write_text("")
    (src / "missing.rs").write_text("")
    (out / "initproc").write_bytes(b"init")
    (suite / "write").write_bytes(b"write test")
    return root


def test_fs_command(project, capsys):
    assert main(["--root", str(project), "fs", "--arch", "riscv64"]) == 0
    image = project / "fs-img/fs.img"
    with Fat32Volume(image, readonly=True) as vol:
        assert [e.name for e in vol.listdir()] == ["bin", "initproc", "write"]
    out = capsys.readouterr().out
    assert "missing" in out
    assert (project / "build/logs/build.log").exists()


def test_build_command(posix_only, project, fake_cargo):
    rc = main(["--root", str(project), "build", "--arch", "riscv64", "--board", "rvqemu",
               "--cargo", str(fake_cargo)])
    assert rc == 0
    assert (project / "kernel-qemu").read_bytes() == b"\x13\x00\x00\x00" * 64
    assert (project / "fs-img/fs.img").exists()


def test_build_failure_names_step_and_target(project, capsys):
    (project / "os/src/hal/arch/riscv/linker-rvqemu.ld").unlink()
    rc = main(["--root", str(project), "build", "--arch", "riscv64", "--board", "rvqemu", "--no-fs"])
    assert rc == 1
    assert "[ERROR] resolve (riscv64/rvqemu/release)" in capsys.readouterr().out


def test_inspect_lists_files(project, capsys):
    main(["--root", str(project), "fs", "--arch", "riscv64"])
    capsys.readouterr()
    assert main(["inspect", str(project / "fs-img/fs.img")]) == 0
    out = capsys.readouterr().out
    assert "boot signature 0x55AA" in out
    assert "/initproc" in out and "/bin/" in out


def test_setup_then_fs_uses_stored_testsuite(project, tmp_path):
    other = tmp_path / "elsewhere" / "riscv64"
    other.mkdir(parents=True)
    (other / "clone").write_bytes(b"clone")
    assert main(["--root", str(project), "setup", "--testsuite-dir", str(other.parent)]) == 0
    assert load_settings(project / ".imgforge.env")["TESTSUITE_DIR"] == str(other.parent.resolve())

    assert main(["--root", str(project), "fs", "--arch", "riscv64"]) == 0
    with Fat32Volume(project / "fs-img/fs.img", readonly=True) as vol:
        assert vol.stat("/clone") is not None
        assert vol.stat("/write") is None


def test_setup_needs_something(project):
    assert main(["--root", str(project), "setup"]) == 1


def test_run_without_artifacts(project):
    assert main(["--root", str(project), "run", "--board", "rvqemu"]) == 1


def test_clean(project):
    main(["--root", str(project), "fs", "--arch", "riscv64"])
    (project / "kernel-qemu").write_bytes(b"k")
    assert main(["--root", str(project), "clean"]) == 0
    assert not (project / "fs-img").exists()
    assert not (project / "kernel-qemu").exists()
    assert not (project / "user/target").exists()
    assert (project / "user/src/bin/initproc.rs").exists()


def test_non_positive_block_count_is_reported(project, capsys):
    rc = main(["--root", str(project), "fs", "--arch", "riscv64", "--block-count", "-1"])
    assert rc == 1
    assert "[ERROR] create: image size must be positive" in capsys.readouterr().out
    assert not (project / "fs-img/fs.img").exists()
