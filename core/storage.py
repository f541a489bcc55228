import os
from dataclasses import dataclass
from typing import List, Optional

from config.settings import TEMPLATE_DISTRO_HINT
from core.console import Console
from core.errors import ConfigurationError, HypervisorCommandError
from core.logger import log_event
from core.pve_cli import PveCli
from schemas.provision_schema import ProvisioningRequest

CONTENT_LABELS = {
    "rootdir": "Container",
    "vztmpl": "Container template",
    "images": "Disk image",
    "iso": "ISO image",
    "import": "Import image",
}

DISK_IMAGE_SUFFIXES = (".qcow2", ".img", ".raw", ".vmdk")


def template_stem(name: str) -> str:
    """`debian-12-standard_12.7-1_amd64.tar.zst` -> `debian-12-standard`"""
    base = os.path.basename(name)
    for suffix in (".tar.zst", ".tar.gz", ".tar.xz", ".qcow2", ".img", ".raw", ".iso"):
        if base.endswith(suffix):
            base = base[: -len(suffix)]
            break
    return base.split("_", 1)[0]


def select_storage(pve: PveCli, console: Console, content: str, preferred: Optional[str]) -> str:
    """
    Pick a storage pool able to hold `content`.

    The preferred pool wins when it qualifies; a single candidate is taken
    as is; otherwise the operator is asked, falling back to the first pool.
    """
    label = CONTENT_LABELS.get(content, content)
    names = [pool["name"] for pool in pve.list_storages(content)]

    if not names:
        console.warning(f"'{label}' needs to be selected for at least one storage location.")
        raise ConfigurationError("Unable to detect valid storage location.")

    if preferred in names:
        return preferred

    if len(names) == 1:
        chosen = names[0]
    else:
        chosen = console.choose(
            f"Which storage pool would you like to use for the {label.lower()}?", names
        ) or names[0]

    if preferred:
        console.warning(f"Storage '{preferred}' cannot hold {label.lower()}s, using '{chosen}'")
    console.info(f"Using '{chosen}' for {label.lower()} storage.")
    return chosen


def _pick(console: Console, question: str, candidates: List[str]) -> str:
    console.info("Available images:")
    for candidate in candidates:
        console.echo(f"  {candidate}")
    choice = console.choose(question, candidates)
    if choice is None:
        choice = candidates[0]
        console.info(f"Auto-selecting {choice}")
    return choice


def resolve_container_template(pve: PveCli, console: Console, request: ProvisioningRequest) -> str:
    """
    Return a template volume id that `pct create` can read, downloading one
    through `pveam` when nothing suitable is cached locally.
    """
    template = request.template or ""
    storage, sep, path = template.partition(":")
    if not sep:
        storage, name = request.template_storage, template
    else:
        name = os.path.basename(path)

    storage = select_storage(pve, console, "vztmpl", storage)
    local = pve.list_templates(storage)
    wanted = f"{storage}:vztmpl/{name}"
    if wanted in local:
        return wanted

    console.warning(f"Template file not found: {template}")
    stem = template_stem(name) or TEMPLATE_DISTRO_HINT
    matches = [volid for volid in local if os.path.basename(volid).startswith(stem)]
    if matches:
        return _pick(console, "Select a template", matches)

    pve.update_template_index()
    available = pve.available_templates()
    if name in available:
        download = name
    else:
        candidates = sorted(n for n in available if n.startswith(stem))
        if not candidates:
            candidates = sorted(n for n in available if n.startswith(TEMPLATE_DISTRO_HINT))
        download = candidates[-1] if candidates else None

    if download is None:
        raise ConfigurationError(
            f"No usable template found for '{template}' in '{storage}' or in the pveam catalogue."
        )

    console.info(f"Downloading LXC template {download} (Patience)...")
    pve.download_template(storage, download)
    log_event(f"[storage] Downloaded template {download} to {storage}")
    return f"{storage}:vztmpl/{download}"


@dataclass
class VmImage:
    """How the VM gets its boot media: an ISO, an importable disk image or nothing."""

    kind: str  # "iso" | "disk" | "none"
    source: Optional[str] = None


def _list_volumes(pve: PveCli, storage: str, content: str) -> List[str]:
    try:
        return pve.list_volumes(storage, content)
    except HypervisorCommandError as e:
        log_event(f"[storage] Could not list {content} volumes on {storage}: {e}")
        return []


def resolve_vm_image(pve: PveCli, console: Console, request: ProvisioningRequest) -> VmImage:
    template = request.template
    if not template:
        return VmImage("none")

    if template.endswith(".iso"):
        volid = template if ":" in template else f"{request.template_storage}:iso/{template}"
        if pve.volume_path(volid):
            return VmImage("iso", volid)
        console.warning(f"ISO/Template file not found: {template}")
        isos = _list_volumes(pve, request.template_storage, "iso")
        if not isos:
            raise ConfigurationError(f"No ISO images found in {request.template_storage}")
        return VmImage("iso", _pick(console, "Select an ISO", isos))

    if template.startswith("/"):
        if os.path.isfile(template):
            return VmImage("disk", template)
    elif ":" in template and pve.volume_path(template):
        return VmImage("disk", template)

    console.warning(f"Disk image not found: {template}")
    stem = template_stem(template)
    images = [
        volid
        for volid in _list_volumes(pve, request.template_storage, "import")
        if volid.endswith(DISK_IMAGE_SUFFIXES) and os.path.basename(volid).startswith(stem)
    ]
    if not images:
        raise ConfigurationError(
            f"No importable disk image matching '{template}' found in {request.template_storage}"
        )
    return VmImage("disk", _pick(console, "Select a disk image", images))
