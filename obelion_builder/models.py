from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import ManifestError


class Arch(str, Enum):
    AMD64 = "amd64"
    ARM64 = "arm64"
    I386 = "i386"


class BootProfile(str, Enum):
    """Boot layout of the produced image, chosen per architecture."""

    LEGACY_ONLY = "legacy-only"
    LEGACY_PLUS_UEFI = "legacy-plus-uefi"
    HYBRID_GPT_APM = "hybrid-gpt-apm"

    @classmethod
    def for_arch(cls, arch: str) -> "BootProfile":
        return DEFAULT_BOOT_PROFILES[Arch(arch)]

    @property
    def legacy_bios(self) -> bool:
        return self is not BootProfile.HYBRID_GPT_APM

    @property
    def uefi(self) -> bool:
        return self is not BootProfile.LEGACY_ONLY

    @property
    def joliet(self) -> bool:
        return self is BootProfile.HYBRID_GPT_APM

    @property
    def gpt_apm(self) -> bool:
        return self is BootProfile.HYBRID_GPT_APM

    @property
    def required_boot_assets(self) -> Tuple[str, ...]:
        assets: List[str] = []
        if self.legacy_bios:
            assets += [ISOLINUX_BIN, ISOLINUX_LDLINUX]
        if self.uefi:
            assets.append(EFI_IMG)
        return tuple(assets)


ISOLINUX_BIN = "isolinux/isolinux.bin"
ISOLINUX_LDLINUX = "isolinux/ldlinux.c32"
ISOLINUX_CATALOG = "isolinux/boot.cat"
EFI_IMG = "boot/grub/efi.img"
EFI_CATALOG = "boot.catalog"

DEFAULT_BOOT_PROFILES: Dict[Arch, BootProfile] = {
    Arch.AMD64: BootProfile.LEGACY_PLUS_UEFI,
    Arch.I386: BootProfile.LEGACY_ONLY,
    Arch.ARM64: BootProfile.HYBRID_GPT_APM,
}


@dataclass(frozen=True)
class ImageArtifact:
    source: str
    path: Path
    arch: str
    min_size: int
    valid: bool = False

    @property
    def size(self) -> int:
        return self.path.stat().st_size


@dataclass(frozen=True)
class WorkingTree:
    root: Path
    arch: str
    customized: bool = False


@dataclass(frozen=True)
class BootEntry:
    name: str
    label: str
    kernel: Optional[str] = None
    initrd: Optional[str] = None
    args: str = ""
    localboot: Optional[str] = None

    @property
    def bootable_kernel(self) -> bool:
        return bool(self.kernel and self.initrd)


@dataclass(frozen=True)
class PackageManifest:
    """Ordered package ids grouped under cosmetic section titles."""

    sections: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for _, packages in self.sections:
            for pkg in packages:
                if not pkg or any(c.isspace() for c in pkg):
                    raise ManifestError(f"Invalid package identifier: {pkg!r}")
                if pkg in seen:
                    raise ManifestError(f"Duplicate package in manifest: {pkg}")
                seen.add(pkg)

    @classmethod
    def from_sections(cls, sections: Mapping[str, Sequence[str]]) -> "PackageManifest":
        return cls(sections=tuple((title, tuple(pkgs)) for title, pkgs in sections.items()))

    @property
    def packages(self) -> List[str]:
        return [pkg for _, packages in self.sections for pkg in packages]

    def render(self) -> str:
        blocks = []
        for title, packages in self.sections:
            lines = [f"# {title}"] if title else []
            lines.extend(packages)
            blocks.append("\n".join(lines))
        return "\n\n".join(blocks) + "\n"


@dataclass(frozen=True)
class CustomizationBundle:
    manifest: PackageManifest
    provisioning_script: bytes
    branding: Tuple[Tuple[str, bytes], ...] = ()
    boot_entries: Tuple[BootEntry, ...] = ()
    default_entry: str = "install"
    menu_title: str = ""

    def __post_init__(self) -> None:
        names = [e.name for e in self.boot_entries]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate boot entry names: {names}")
        if self.boot_entries and self.default_entry not in names:
            raise ValueError(f"Default boot entry {self.default_entry!r} not among {names}")
        for rel, _ in self.branding:
            p = Path(rel)
            if p.is_absolute() or ".." in p.parts:
                raise ValueError(f"Branding asset must be a relative path inside the tree: {rel}")


@dataclass(frozen=True)
class BuildResult:
    arch: str
    stage: str
    output: Optional[Path] = None
    error: Optional[str] = None
    failed_stage: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.stage == "done"

    def describe(self) -> str:
        if self.ok:
            return f"{self.arch}: done -> {self.output}"
        return f"{self.arch}: FAILED at {self.failed_stage} ({self.error_type}: {self.error})"


@dataclass
class BuildReport:
    results: List[BuildResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.results) and all(r.ok for r in self.results)

    @property
    def succeeded(self) -> List[BuildResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[BuildResult]:
        return [r for r in self.results if not r.ok]

    def summary_lines(self) -> List[str]:
        lines = [f"Succeeded ({len(self.succeeded)}):"]
        lines += [f"  {r.describe()}" for r in self.succeeded]
        lines.append(f"Failed ({len(self.failed)}):")
        lines += [f"  {r.describe()}" for r in self.failed]
        return lines
