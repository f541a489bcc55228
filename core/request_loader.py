"""
Build a validated ProvisioningRequest from layered configuration.

Layers, lowest precedence first:

    1. model defaults (schemas.provision_schema)
    2. application defaults (an installer's preferred cores/memory/tags ...)
    3. environment variables (CTID, RAM_MB, IP, ... as the shell tooling used)
    4. explicit overrides (command-line flags or an API payload)

The result is validated once here; the provisioner never reads the
environment itself.
"""

import os
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from core.errors import ConfigurationError
from core.logger import log_event
from core.pve_cli import PveCli
from schemas.provision_schema import InstanceKind, ProvisioningRequest

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off", ""}

# field -> environment variable names, first match wins
ENV_FIELDS: Dict[str, tuple] = {
    "app": ("APP",),
    # HOSTNAME itself is exported by most login shells and containers
    "hostname": ("PVE_HOSTNAME",),
    "cores": ("CPU_CORES",),
    "memory_mb": ("RAM_MB",),
    "swap_mb": ("SWAP_MB",),
    "storage": ("STORAGE",),
    "template_storage": ("TEMPLATE_STORAGE", "ISO_STORAGE"),
    "template": ("TEMPLATE",),
    "password": ("PASSWORD",),
    "ssh_key": ("SSH_KEY",),
    "ip": ("IP",),
    "netmask": ("NETMASK",),
    "gateway": ("GATEWAY",),
    "bridge": ("BRIDGE",),
    "dns": ("DNS",),
    "tags": ("TAGS",),
    "unprivileged": ("UNPRIVILEGED",),
    "nesting": ("NESTING",),
    "onboot": ("ONBOOT",),
    "reuse_policy": ("REUSE_POLICY",),
    "rollback_on_failure": ("ROLLBACK_ON_FAILURE",),
    "os_type": ("OS_TYPE",),
    "bios": ("BIOS",),
    "machine": ("MACHINE",),
    "scsi_controller": ("SCSI_CONTROLLER",),
    "cloud_init": ("CLOUD_INIT",),
}

_BOOL_FIELDS = {"unprivileged", "nesting", "onboot", "rollback_on_failure", "cloud_init"}


def _id_env_names(kind: InstanceKind) -> tuple:
    return ("CTID", "VMID") if kind == InstanceKind.LXC else ("VMID", "CTID")


def _disk_env_names(kind: InstanceKind) -> tuple:
    return ("ROOTFS_SIZE", "DISK_SIZE") if kind == InstanceKind.LXC else ("DISK_SIZE", "ROOTFS_SIZE")


def parse_bool(value: Any, name: str = "value") -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean (1/0, true/false), got '{value}'")


def _first_env(environ: Mapping[str, str], names: tuple) -> Optional[str]:
    for name in names:
        value = environ.get(name)
        if value is not None and value != "":
            return value
    return None


def environment_layer(kind: InstanceKind, environ: Mapping[str, str]) -> Dict[str, Any]:
    layer: Dict[str, Any] = {}
    for field, names in ENV_FIELDS.items():
        value = _first_env(environ, names)
        if value is None:
            continue
        layer[field] = parse_bool(value, names[0]) if field in _BOOL_FIELDS else value

    instance_id = _first_env(environ, _id_env_names(kind))
    if instance_id is not None:
        layer["instance_id"] = instance_id

    disk_size = _first_env(environ, _disk_env_names(kind))
    if disk_size is not None:
        layer["disk_size"] = disk_size
    return layer


def load_request(
    kind: InstanceKind,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    app_defaults: Optional[Mapping[str, Any]] = None,
    pve: Optional[PveCli] = None,
) -> ProvisioningRequest:
    """
    Merge the configuration layers and validate them into one request.

    An instance id of "auto" is resolved through `pvesh get /cluster/nextid`.
    Raises ConfigurationError for a missing id or any invalid value; no
    hypervisor state is touched except for that id allocation.
    """
    environ = os.environ if environ is None else environ

    data: Dict[str, Any] = {"kind": kind}
    data.update({k: v for k, v in (app_defaults or {}).items() if v is not None})
    data.update(environment_layer(kind, environ))
    data.update({k: v for k, v in (overrides or {}).items() if v is not None})

    id_name = "CTID (Container ID)" if kind == InstanceKind.LXC else "VMID (VM ID)"
    id_var = _id_env_names(kind)[0]
    raw_id = data.get("instance_id")
    if raw_id is None or str(raw_id).strip() == "":
        raise ConfigurationError(f"{id_name} must be specified. Set it with: export {id_var}=100")

    if str(raw_id).strip().lower() == "auto":
        data["instance_id"] = (pve or PveCli()).next_id()
        log_event(f"[config] Allocated next free id {data['instance_id']}")

    try:
        request = ProvisioningRequest(**data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e

    log_event(
        f"[config] Loaded {request.kind.value} request id={request.instance_id} "
        f"hostname={request.hostname} cores={request.cores} memory={request.memory_mb}MB "
        f"disk={request.disk_size}"
    )
    return request
