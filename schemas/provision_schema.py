import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from config.settings import (
    DEFAULT_BRIDGE,
    DEFAULT_DNS,
    DEFAULT_LXC_TEMPLATE,
    DEFAULT_STORAGE,
    DEFAULT_TEMPLATE_STORAGE,
)

UNKNOWN_IP = "unknown"

_DISK_SIZE_RE = re.compile(r"^([1-9]\d*)G?$")


class InstanceKind(str, Enum):
    LXC = "lxc"
    VM = "vm"


class ReusePolicy(str, Enum):
    """
    What to do when the requested instance ID is already taken.

    prompt   - ask the operator; a non-interactive session declines
    reuse    - keep the existing instance and continue with start/install
    fail     - abort without touching the existing instance
    recreate - stop and destroy the existing instance, then create a new one
    """

    PROMPT = "prompt"
    REUSE = "reuse"
    FAIL = "fail"
    RECREATE = "recreate"


def split_tags(raw: object) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        parts = re.split(r"[;,\s]+", raw)
    else:
        parts = [str(p) for p in raw]
    tags: List[str] = []
    for part in parts:
        part = part.strip()
        if part and part not in tags:
            tags.append(part)
    return tags


class ProvisioningRequest(BaseModel):
    """
    Full configuration of one container or VM.

    Built exactly once by core.request_loader (defaults -> environment ->
    overrides) and consumed by the provisioner. Kind-dependent defaults
    (memory, disk, hostname suffix) are filled in after validation.
    """

    kind: InstanceKind = InstanceKind.LXC
    instance_id: int = Field(..., ge=100, description="Numeric Proxmox VMID/CTID")
    app: str = Field("Application", description="Application label, used for the default hostname")
    hostname: Optional[str] = None

    cores: int = Field(2, ge=1, description="CPU cores")
    memory_mb: Optional[int] = Field(None, ge=16, description="RAM in MiB")
    swap_mb: int = Field(512, ge=0, description="Swap in MiB (containers only)")
    disk_size: Optional[str] = Field(None, description="Disk size in whole GiB, e.g. 32G")

    storage: str = DEFAULT_STORAGE
    template_storage: str = DEFAULT_TEMPLATE_STORAGE
    template: Optional[str] = Field(
        None,
        description="LXC template volume (pool:vztmpl/file) or VM image (volume id or path)",
    )

    password: Optional[str] = None
    ssh_key: Optional[str] = Field(None, description="Path to an SSH public key file")

    ip: Optional[str] = Field(None, description="Static address, a.b.c.d or a.b.c.d/prefix")
    netmask: int = Field(24, ge=0, le=32)
    gateway: Optional[str] = None
    bridge: str = DEFAULT_BRIDGE
    dns: str = DEFAULT_DNS

    tags: List[str] = Field(default_factory=list)
    unprivileged: bool = True
    nesting: bool = False
    onboot: bool = False

    reuse_policy: ReusePolicy = ReusePolicy.PROMPT
    rollback_on_failure: bool = True

    # VM only
    os_type: str = "l26"
    bios: str = "seabios"
    machine: str = "q35"
    scsi_controller: str = "virtio-scsi-pci"
    cloud_init: bool = True

    @field_validator("tags", mode="before")
    @classmethod
    def _parse_tags(cls, value):
        return split_tags(value)

    @field_validator("disk_size")
    @classmethod
    def _validate_disk_size(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        match = _DISK_SIZE_RE.match(value.strip().upper())
        if not match:
            # pct and qm take pool:N as GiB, so other units cannot be passed through
            raise ValueError(f"Invalid disk size '{value}', expected whole GiB such as 8G or 32G")
        return f"{match.group(1)}G"

    @field_validator("ip", "gateway", "hostname", "password", "ssh_key", "template")
    @classmethod
    def _blank_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _fill_kind_defaults(self) -> "ProvisioningRequest":
        if self.kind == InstanceKind.LXC:
            self.memory_mb = self.memory_mb or 2048
            self.disk_size = self.disk_size or "8G"
            if self.template is None:
                self.template = DEFAULT_LXC_TEMPLATE
            suffix = "lxc"
        else:
            self.memory_mb = self.memory_mb or 4096
            self.disk_size = self.disk_size or "32G"
            suffix = "vm"
        if not self.hostname:
            slug = re.sub(r"[^a-z0-9-]+", "-", self.app.lower()).strip("-") or "app"
            self.hostname = f"{slug}-{suffix}"
        return self

    # ------------------------------------------------------------------
    # Derived option values
    # ------------------------------------------------------------------
    @property
    def has_static_ip(self) -> bool:
        return self.ip is not None

    @property
    def address(self) -> Optional[str]:
        """Static address without the prefix length."""
        if self.ip is None:
            return None
        return self.ip.split("/", 1)[0]

    def disk_size_number(self) -> str:
        """`32G` -> `32`, for consumers that take `pool:size` in GiB."""
        match = _DISK_SIZE_RE.match(self.disk_size or "")
        if not match:
            raise ValueError(f"Invalid disk size '{self.disk_size}'")
        return match.group(1)

    def tag_string(self) -> str:
        return ";".join(self.tags)

    def cidr(self) -> Optional[str]:
        """Static address with prefix length, `netmask` filling in a bare address."""
        if self.ip is None:
            return None
        return self.ip if "/" in self.ip else f"{self.ip}/{self.netmask}"

    def network_option(self) -> str:
        """Container `--net0` value."""
        parts = ["name=eth0", f"bridge={self.bridge}"]
        if self.ip:
            parts.append(f"ip={self.cidr()}")
            if self.gateway:
                parts.append(f"gw={self.gateway}")
        return ",".join(parts)

    def ipconfig_option(self) -> str:
        """VM cloud-init `--ipconfig0` value."""
        if not self.ip:
            return "ip=dhcp"
        value = f"ip={self.cidr()}"
        if self.gateway:
            value += f",gw={self.gateway}"
        return value


class ProvisioningResult(BaseModel):
    status: str
    kind: InstanceKind
    instance_id: int
    hostname: str
    ip_address: str = UNKNOWN_IP
    password: Optional[str] = None
    reused: bool = False
    installed_app: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    access: List[str] = Field(default_factory=list)
