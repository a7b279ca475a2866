from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import yaml

from .errors import ConfigError
from .lib.manifests import fill_fields
from .models import Arch, BootEntry, BootProfile

MIB = 1024 * 1024
DEFAULT_MIN_SIZE_MIB = 500
# Install, and check media for defects.
REQUIRED_BOOT_ENTRIES = ("install", "check")


@dataclass(frozen=True)
class ArchConfig:
    arch: str
    url: str
    cache_name: str
    min_size: int
    boot_profile: BootProfile


@dataclass(frozen=True)
class BuildConfig:
    raw: Dict[str, Any]
    base_dir: Path = Path(".")

    def _section(self, key: str) -> Dict[str, Any]:
        value = self.raw.get(key) or {}
        if not isinstance(value, dict):
            raise ConfigError(f"'{key}' must be a mapping")
        return value

    def resolve(self, rel: str) -> Path:
        p = Path(rel).expanduser()
        return p if p.is_absolute() else self.base_dir / p

    @property
    def distro_name(self) -> str:
        return str(self._section("distro").get("name") or "Obelion")

    @property
    def distro_version(self) -> str:
        return str(self._section("distro").get("version") or "1.0")

    @property
    def distro_codename(self) -> str:
        return str(self._section("distro").get("codename") or "")

    @property
    def distro_description(self) -> str:
        return str(self._section("distro").get("description") or "")

    @property
    def branding_fields(self) -> Dict[str, str]:
        return {
            "name": self.distro_name,
            "version": self.distro_version,
            "codename": self.distro_codename,
            "description": self.distro_description,
        }

    @property
    def work_dir(self) -> str:
        return str(self._section("paths").get("work_dir") or "build/work")

    @property
    def download_timeout_s(self) -> float:
        return float(self._section("download").get("timeout_s") or 60)

    @property
    def targets(self) -> List[str]:
        """Configured targets; defaults to every architecture with a source."""
        targets = self.raw.get("targets") or list(self._section("arch").keys())
        return [str(t) for t in targets]

    def arch(self, arch: str) -> ArchConfig:
        try:
            Arch(arch)
        except ValueError as e:
            raise ConfigError(f"Unsupported architecture: {arch}") from e

        entry = self._section("arch").get(arch)
        if not isinstance(entry, dict) or not entry.get("url"):
            raise ConfigError(f"No source url configured for {arch}")

        url = str(entry["url"])
        cache_name = str(entry.get("cache_name") or Path(urlparse(url).path).name or f"base-{arch}.iso")
        min_size = int(float(entry.get("min_size_mib", DEFAULT_MIN_SIZE_MIB)) * MIB)
        profile_name = entry.get("boot_profile")
        try:
            profile = BootProfile(profile_name) if profile_name else BootProfile.for_arch(arch)
        except ValueError as e:
            raise ConfigError(f"Unknown boot_profile for {arch}: {profile_name}") from e

        return ArchConfig(arch=arch, url=url, cache_name=cache_name, min_size=min_size, boot_profile=profile)

    @property
    def manifest_path(self) -> Path:
        return self.resolve(str(self._section("customization").get("manifest") or "manifests/packages.list"))

    @property
    def provisioning_script_path(self) -> Path:
        return self.resolve(
            str(self._section("customization").get("provisioning_script") or "assets/post-install.sh")
        )

    @property
    def branding_dir(self) -> Path:
        return self.resolve(str(self._section("customization").get("branding_dir") or "assets/branding"))

    @property
    def default_boot_entry(self) -> str:
        return str(self._section("boot").get("default") or "install")

    @property
    def boot_entries(self) -> List[BootEntry]:
        entries = self._section("boot").get("entries") or []
        fields = self.branding_fields
        out: List[BootEntry] = []
        for e in entries:
            if not isinstance(e, dict) or not e.get("name") or not e.get("label"):
                raise ConfigError(f"Boot entry needs 'name' and 'label': {e!r}")
            localboot: Optional[str] = e.get("localboot")
            out.append(
                BootEntry(
                    name=str(e["name"]),
                    label=fill_fields(str(e["label"]), fields),
                    kernel=e.get("kernel"),
                    initrd=e.get("initrd"),
                    args=str(e.get("args") or ""),
                    localboot=None if localboot is None else str(localboot),
                )
            )
        missing = [name for name in REQUIRED_BOOT_ENTRIES if name not in {b.name for b in out}]
        if missing:
            raise ConfigError(f"Boot menu is missing required entries: {', '.join(missing)}")
        return out


def load_build_config(path: str) -> BuildConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigError("build config must be YAML")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError("build config must contain a mapping/object")

    return BuildConfig(raw=raw, base_dir=p.resolve().parent)
