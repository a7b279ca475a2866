from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Mapping, Tuple

from ..errors import ManifestError
from ..models import CustomizationBundle, PackageManifest

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".txt", ".md", ".cfg", ".conf", ""}


def parse_manifest(text: str) -> PackageManifest:
    """Parse a newline-delimited package list.

    ``#`` lines are comments; a comment directly preceding packages names the
    section they are grouped under. Grouping is cosmetic only.
    """

    sections: List[Tuple[str, List[str]]] = []
    title = ""
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#"):
            title = line.lstrip("#").strip()
            continue
        if len(line.split()) != 1:
            raise ManifestError(f"line {lineno}: expected one package id, got {line!r}")
        if not sections or sections[-1][0] != title:
            sections.append((title, []))
        sections[-1][1].append(line)

    return PackageManifest(sections=tuple((t, tuple(p)) for t, p in sections))


def load_manifest(path: Path) -> PackageManifest:
    return parse_manifest(Path(path).read_text(encoding="utf-8"))


def fill_fields(text: str, fields: Mapping[str, str]) -> str:
    """Replace known ``{field}`` placeholders; any other braces are left as written."""
    for key, value in fields.items():
        text = text.replace("{" + key + "}", str(value))
    return text


def load_branding(branding_dir: Path, fields: Mapping[str, str]) -> Tuple[Tuple[str, bytes], ...]:
    """Read branding assets; text assets get {name}/{version}/... filled in."""

    root = Path(branding_dir)
    if not root.is_dir():
        logger.warning("Branding directory missing: %s", root)
        return ()

    assets: List[Tuple[str, bytes]] = []
    for p in sorted(root.rglob("*")):
        if not p.is_file():
            continue
        rel = p.relative_to(root).as_posix()
        data = p.read_bytes()
        if p.suffix.lower() in TEXT_SUFFIXES:
            data = fill_fields(p.read_text(encoding="utf-8"), fields).encode("utf-8")
        assets.append((rel, data))
    return tuple(assets)


def load_bundle(cfg) -> CustomizationBundle:
    """Assemble the customization bundle described by a BuildConfig."""

    return CustomizationBundle(
        manifest=load_manifest(cfg.manifest_path),
        provisioning_script=Path(cfg.provisioning_script_path).read_bytes(),
        branding=load_branding(cfg.branding_dir, cfg.branding_fields),
        boot_entries=tuple(cfg.boot_entries),
        default_entry=cfg.default_boot_entry,
        menu_title=f"{cfg.distro_name} {cfg.distro_version}",
    )
