"""
Pytest configuration and shared fixtures for obelion-builder tests.

External commands (losetup, mount, xorriso, apt-get) are never executed:
tests patch ``run_cmd`` in the module under test.
"""

import os
import textwrap
from pathlib import Path

import pytest

from obelion_builder.models import BootEntry, CustomizationBundle, PackageManifest

MIB = 1024 * 1024


def make_iso(path: Path, size: int, *, signed: bool = True) -> Path:
    """Create a sparse file of the given size, optionally ISO 9660 signed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.truncate(size)
        if signed and size >= 32768 + 6:
            f.seek(32768)
            f.write(b"\x01CD001")
    return path


@pytest.fixture
def iso_factory():
    return make_iso


@pytest.fixture
def base_tree(tmp_path) -> Path:
    """A directory shaped like a mounted Ubuntu live-server image."""
    root = tmp_path / "mounted"
    (root / "isolinux").mkdir(parents=True)
    (root / "isolinux" / "isolinux.bin").write_bytes(b"\xfa" * 64)
    (root / "isolinux" / "ldlinux.c32").write_bytes(b"ldlinux")
    (root / "isolinux" / "txt.cfg").write_text("default live\n")
    (root / "boot" / "grub").mkdir(parents=True)
    (root / "boot" / "grub" / "efi.img").write_bytes(b"\x00" * 128)
    (root / "boot" / "grub" / "grub.cfg").write_text("set timeout=30\n")
    (root / "casper").mkdir()
    (root / "casper" / "vmlinuz").write_bytes(b"kernel")
    (root / "casper" / "initrd").write_bytes(b"initrd")
    (root / "dists").mkdir()
    os.symlink("dists", root / "ubuntu")
    return root


@pytest.fixture
def boot_entries():
    return (
        BootEntry(
            name="install",
            label="^Install Obelion Linux 1.0",
            kernel="/casper/vmlinuz",
            initrd="/casper/initrd",
            args="boot=casper quiet splash ---",
        ),
        BootEntry(
            name="check",
            label="^Check disc for defects",
            kernel="/casper/vmlinuz",
            initrd="/casper/initrd",
            args="boot=casper integrity-check quiet splash ---",
        ),
        BootEntry(name="hd", label="^Boot from first hard disk", localboot="0x80"),
    )


PROVISIONING_SCRIPT = textwrap.dedent(
    """\
    #!/bin/bash
    set -e
    apt-get update
    apt-get install -y htop
    echo provisioned
    """
).encode("utf-8")


@pytest.fixture
def bundle(boot_entries) -> CustomizationBundle:
    return CustomizationBundle(
        manifest=PackageManifest.from_sections(
            {"Development Tools": ["git", "curl"], "System Tools": ["htop"]}
        ),
        provisioning_script=PROVISIONING_SCRIPT,
        branding=(("obelion-logo.txt", b"Obelion 1.0\n"),),
        boot_entries=boot_entries,
        default_entry="install",
        menu_title="Obelion 1.0",
    )


@pytest.fixture
def config_file(tmp_path) -> Path:
    """A build_config.yaml with its manifest/script/branding next to it."""
    cfg_dir = tmp_path / "cfg"
    (cfg_dir / "manifests").mkdir(parents=True)
    (cfg_dir / "assets" / "branding").mkdir(parents=True)
    (cfg_dir / "manifests" / "packages.list").write_text(
        "# Development Tools\ngit\ncurl\n\n# System Tools\nhtop\n"
    )
    (cfg_dir / "assets" / "post-install.sh").write_bytes(PROVISIONING_SCRIPT)
    (cfg_dir / "assets" / "branding" / "obelion-logo.txt").write_text("{name} {version} ({codename})\n")

    cfg = cfg_dir / "build_config.yaml"
    cfg.write_text(
        textwrap.dedent(
            f"""\
            distro:
              name: Obelion
              version: "1.0"
              codename: ArcticFox
              description: AI Development Platform
            paths:
              work_dir: {tmp_path / "work"}
            targets: [amd64]
            arch:
              amd64:
                url: https://mirror.example/ubuntu-amd64.iso
                cache_name: ubuntu-server-amd64.iso
                min_size_mib: 500
              arm64:
                url: https://mirror.example/ubuntu-arm64.iso
                cache_name: ubuntu-server-arm64.iso
                min_size_mib: 500
            boot:
              default: install
              entries:
                - name: install
                  label: "^Install {{name}} Linux {{version}}"
                  kernel: /casper/vmlinuz
                  initrd: /casper/initrd
                  args: "boot=casper quiet splash ---"
                - name: check
                  label: "^Check disc for defects"
                  kernel: /casper/vmlinuz
                  initrd: /casper/initrd
                  args: "boot=casper integrity-check ---"
            """
        )
    )
    return cfg
