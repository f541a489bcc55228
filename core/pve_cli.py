import json
import logging
import subprocess
from typing import Any, Dict, List, Optional, Sequence

from core.errors import HypervisorCommandError
from core.logger import log_event
from schemas.provision_schema import InstanceKind

_SECRET_FLAGS = {"--password", "--cipassword"}


def _redact(argv: Sequence[str]) -> str:
    shown: List[str] = []
    hide_next = False
    for token in argv:
        if hide_next:
            shown.append("********")
            hide_next = False
            continue
        shown.append(token)
        hide_next = token in _SECRET_FLAGS
    return " ".join(shown)


def _table_rows(output: str) -> List[List[str]]:
    """Whitespace-split the rows of a CLI table, dropping the header line."""
    lines = [line for line in output.splitlines() if line.strip()]
    return [line.split() for line in lines[1:]]


class PveCli:
    """
    Thin wrapper around the Proxmox VE command line tools:

        * pct   - LXC containers
        * qm    - QEMU virtual machines
        * pvesm - storage pools and volumes
        * pveam - container template catalogue
        * pvesh - cluster API (next free VMID)

    Every call is an explicit argv list handed to subprocess.run, never a
    shell string, so option values are passed through untouched.
    """

    def _run(
        self,
        argv: Sequence[str],
        *,
        check: bool = True,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        argv = [str(a) for a in argv]
        log_event(f"[pve] {_redact(argv)}", level=logging.DEBUG)
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                input=input,
            )
        except FileNotFoundError as e:
            log_event(f"[pve] {argv[0]} not found: {e}", level=logging.ERROR)
            raise HypervisorCommandError(argv, 127, f"{argv[0]} not found") from e

        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()
            log_event(f"[pve] FAILED ({result.returncode}): {_redact(argv)}: {stderr}", level=logging.ERROR)
            raise HypervisorCommandError(argv, result.returncode, stderr)
        return result

    @staticmethod
    def _tool(kind: InstanceKind) -> str:
        return "pct" if kind == InstanceKind.LXC else "qm"

    # ------------------------------------------------------------------
    # Instance lifecycle
    # ------------------------------------------------------------------
    def exists(self, kind: InstanceKind, instance_id: int) -> bool:
        result = self._run([self._tool(kind), "status", instance_id], check=False)
        return result.returncode == 0

    def status(self, kind: InstanceKind, instance_id: int) -> str:
        """Return `running`, `stopped`, ... as reported by `pct|qm status`."""
        result = self._run([self._tool(kind), "status", instance_id])
        out = result.stdout.strip()
        # Expected format: "status: running"
        if "status:" in out:
            return out.split("status:", 1)[1].strip() or "unknown"
        return out or "unknown"

    def create_container(self, ctid: int, template: str, options: Sequence[str]) -> None:
        self._run(["pct", "create", ctid, template, *options])

    def create_vm(self, vmid: int, options: Sequence[str]) -> None:
        self._run(["qm", "create", vmid, *options])

    def start(self, kind: InstanceKind, instance_id: int) -> None:
        self._run([self._tool(kind), "start", instance_id])

    def stop(self, kind: InstanceKind, instance_id: int) -> None:
        self._run([self._tool(kind), "stop", instance_id])

    def destroy(self, kind: InstanceKind, instance_id: int) -> None:
        argv = [self._tool(kind), "destroy", instance_id]
        if kind == InstanceKind.VM:
            argv.append("--purge")
        self._run(argv)

    def resize_disk(self, vmid: int, disk: str, size: str) -> None:
        self._run(["qm", "disk", "resize", vmid, disk, size])

    # ------------------------------------------------------------------
    # Guest access
    # ------------------------------------------------------------------
    def exec_in_container(
        self,
        ctid: int,
        argv: Sequence[str],
        *,
        input: Optional[str] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        return self._run(["pct", "exec", ctid, "--", *argv], input=input, check=check)

    def guest_network_interfaces(self, vmid: int) -> Optional[List[Dict[str, Any]]]:
        """
        Interfaces reported by the QEMU guest agent, or None while the agent
        is not answering yet.
        """
        result = self._run(["qm", "guest", "cmd", vmid, "network-get-interfaces"], check=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            log_event(f"[pve] Unparseable guest agent reply for VM {vmid}")
            return None
        return data if isinstance(data, list) else None

    # ------------------------------------------------------------------
    # Storage / templates
    # ------------------------------------------------------------------
    def list_storages(self, content: str) -> List[Dict[str, str]]:
        """Active pools that accept `content` (rootdir, vztmpl, images, iso)."""
        result = self._run(["pvesm", "status", "-content", content])
        pools = []
        for row in _table_rows(result.stdout):
            if len(row) < 3:
                continue
            pools.append(
                {
                    "name": row[0],
                    "type": row[1],
                    "status": row[2],
                    "available": row[5] if len(row) > 5 else "",
                }
            )
        return [p for p in pools if p["status"] == "active"]

    def list_templates(self, storage: str) -> List[str]:
        """Volume ids of downloaded templates, e.g. local:vztmpl/debian-12-...tar.zst"""
        result = self._run(["pveam", "list", storage])
        return [row[0] for row in _table_rows(result.stdout) if row]

    def update_template_index(self) -> None:
        self._run(["pveam", "update"], check=False)

    def available_templates(self, section: str = "system") -> List[str]:
        result = self._run(["pveam", "available", "--section", section])
        names = []
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) >= 2:
                names.append(parts[1])
        return names

    def download_template(self, storage: str, name: str) -> None:
        self._run(["pveam", "download", storage, name])

    def list_volumes(self, storage: str, content: str) -> List[str]:
        result = self._run(["pvesm", "list", storage, "--content", content])
        return [row[0] for row in _table_rows(result.stdout) if row]

    def volume_path(self, volid: str) -> Optional[str]:
        result = self._run(["pvesm", "path", volid], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    # ------------------------------------------------------------------
    # Cluster / inventory queries
    # ------------------------------------------------------------------
    def next_id(self) -> int:
        result = self._run(["pvesh", "get", "/cluster/nextid"])
        return int(result.stdout.strip().strip('"'))

    def list_containers(self) -> List[int]:
        result = self._run(["pct", "list"])
        ids = []
        for row in _table_rows(result.stdout):
            if row and row[0].isdigit():
                ids.append(int(row[0]))
        return ids

    def container_config(self, ctid: int) -> Optional[Dict[str, str]]:
        """
        Parse `pct config` into a flat dict. Snapshot sections are ignored.
        Returns None when the config cannot be read.
        """
        result = self._run(["pct", "config", ctid], check=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        config: Dict[str, str] = {}
        for line in result.stdout.splitlines():
            if line.startswith("["):
                break
            if line.startswith("#") or ":" not in line:
                continue
            key, value = line.split(":", 1)
            config[key.strip()] = value.strip()
        return config
