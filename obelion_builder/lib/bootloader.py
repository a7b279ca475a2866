from __future__ import annotations

import logging
from typing import Sequence

from ..models import BootEntry

logger = logging.getLogger(__name__)

ISOLINUX_MENU = "isolinux/txt.cfg"
GRUB_MENU = "boot/grub/grub.cfg"


def render_isolinux_menu(entries: Sequence[BootEntry], *, default: str) -> str:
    """Render the BIOS (ISOLINUX) text menu."""

    lines = [f"default {default}"]
    for e in entries:
        lines.append(f"label {e.name}")
        lines.append(f"  menu label {e.label}")
        if e.localboot is not None:
            lines.append(f"  localboot {e.localboot}")
            continue
        if e.kernel:
            lines.append(f"  kernel {e.kernel}")
        append = []
        if e.initrd:
            append.append(f"initrd={e.initrd}")
        if e.args:
            append.append(e.args)
        if append:
            lines.append(f"  append {' '.join(append)}")
    return "\n".join(lines) + "\n"


def render_grub_menu(entries: Sequence[BootEntry], *, default: str, title: str = "") -> str:
    """Render GRUB menu entries for UEFI boot.

    Only entries with both a kernel and an initrd make sense under GRUB; BIOS
    specific entries (memtest, local disk) are left to ISOLINUX.
    """

    usable = [e for e in entries if e.bootable_kernel]
    names = [e.name for e in usable]
    index = names.index(default) if default in names else 0

    lines = [
        f"set default={index}",
        "set timeout=5",
        "",
        "loadfont unicode",
        "set menu_color_normal=white/black",
        "set menu_color_highlight=black/light-gray",
    ]
    if title:
        lines.append(f"# {title}")
    for e in usable:
        label = e.label.replace("^", "")
        lines.append("")
        lines.append(f'menuentry "{label}" {{')
        lines.append("\tset gfxpayload=keep")
        lines.append(f"\tlinux\t{e.kernel} {e.args}".rstrip())
        lines.append(f"\tinitrd\t{e.initrd}")
        lines.append("}")
    return "\n".join(lines) + "\n"
