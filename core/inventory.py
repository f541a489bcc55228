"""
LXC inventory: scan every container on this node and snapshot it to JSON + CSV.

Both files are rewritten from scratch on each scan; there is no incremental
update and no schema version.
"""

import csv
import getpass
import json
import re
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from config.settings import INVENTORY_CSV, INVENTORY_FILE
from core.console import Console
from core.errors import HypervisorCommandError, InventoryError
from core.logger import log_event
from core.metrics import record_inventory
from core.pve_cli import PveCli
from core.readiness import parse_inet_address
from schemas.inventory_schema import (
    CSV_HEADER,
    ContainerRecord,
    InventorySnapshot,
    InventorySummary,
)
from schemas.provision_schema import InstanceKind

_NET_IP_RE = re.compile(r"(?:^|,)ip=([^,/\s]+)")
_NON_ADDRESSES = {"dhcp", "manual"}


def _to_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def configured_address(config: Dict[str, str]) -> str:
    """Static address from the first netN entry, without prefix length."""
    for key in sorted(k for k in config if re.fullmatch(r"net\d+", k)):
        match = _NET_IP_RE.search(config[key])
        if match and match.group(1).lower() not in _NON_ADDRESSES:
            return match.group(1)
    return ""


def record_from_config(ctid: int, config: Dict[str, str], status: str, timestamp: str) -> ContainerRecord:
    return ContainerRecord(
        ctid=ctid,
        hostname=config.get("hostname") or "unknown",
        ip_address=configured_address(config),
        status=status,
        memory_mb=_to_int(config.get("memory")),
        cpu_cores=_to_int(config.get("cores")),
        storage=config.get("rootfs", "").split(",")[0],
        tags=config.get("tags", "").replace('"', ""),
        unprivileged=config.get("unprivileged", "0").strip() == "1",
        last_updated=timestamp,
    )


class InventoryStore:
    """Scans containers through PveCli and persists snapshots."""

    def __init__(
        self,
        pve: Optional[PveCli] = None,
        console: Optional[Console] = None,
        json_path: Path = INVENTORY_FILE,
        csv_path: Path = INVENTORY_CSV,
    ) -> None:
        self.pve = pve or PveCli()
        self.console = console or Console()
        self.json_path = Path(json_path)
        self.csv_path = Path(csv_path)

    def _live_address(self, ctid: int) -> str:
        result = self.pve.exec_in_container(
            ctid, ["ip", "-4", "-o", "addr", "show", "dev", "eth0"], check=False
        )
        if result.returncode != 0:
            return ""
        return parse_inet_address(result.stdout) or ""

    def scan(self) -> InventorySnapshot:
        self.console.info("Scanning LXC containers...")
        ctids = self.pve.list_containers()
        if not ctids:
            self.console.warning("No LXC containers found")
            raise InventoryError("No LXC containers found on this node")

        now = datetime.now(timezone.utc)
        timestamp = now.strftime("%Y-%m-%dT%H:%M:%SZ")

        records: List[ContainerRecord] = []
        for ctid in ctids:
            config = self.pve.container_config(ctid)
            if config is None:
                self.console.warning(f"Could not read config for container {ctid}, skipping")
                continue
            try:
                status = self.pve.status(InstanceKind.LXC, ctid)
            except HypervisorCommandError:
                status = "unknown"
            record = record_from_config(ctid, config, status, timestamp)
            if not record.ip_address and status == "running":
                record.ip_address = self._live_address(ctid)
            records.append(record)
            log_event(f"[inventory] {ctid} {record.hostname} {record.ip_address or '-'} {status}")

        summary = InventorySummary(
            running=sum(1 for r in records if r.status == "running"),
            stopped=sum(1 for r in records if r.status != "running"),
        )
        record_inventory(summary.running, summary.stopped)
        return InventorySnapshot(
            generated_at=timestamp,
            generated_by=f"{getpass.getuser()}@{socket.gethostname()}",
            total_containers=len(records),
            containers=records,
            summary=summary,
        )

    def write(self, snapshot: InventorySnapshot) -> None:
        self.json_path.parent.mkdir(parents=True, exist_ok=True)
        self.csv_path.parent.mkdir(parents=True, exist_ok=True)

        self.json_path.write_text(snapshot.model_dump_json(indent=2) + "\n", encoding="utf-8")
        with self.csv_path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for record in snapshot.containers:
                writer.writerow(record.csv_row())

        log_event(f"[inventory] Wrote {snapshot.total_containers} containers to {self.json_path}")
        self.console.ok(f"Inventory updated: {snapshot.total_containers} containers")
        self.console.info(f"JSON: {self.json_path}")
        self.console.info(f"CSV:  {self.csv_path}")

    def update(self) -> InventorySnapshot:
        snapshot = self.scan()
        self.write(snapshot)
        return snapshot

    def load(self) -> InventorySnapshot:
        if not self.json_path.exists():
            raise InventoryError(
                f"Inventory file not found: {self.json_path}. Run `pve-provision inventory update` first."
            )
        try:
            return InventorySnapshot.model_validate(json.loads(self.json_path.read_text(encoding="utf-8")))
        except (ValueError, ValidationError) as e:
            raise InventoryError(f"Inventory file {self.json_path} is corrupt: {e}") from e

    def find(self, term: str) -> List[ContainerRecord]:
        """Case-insensitive substring match on ctid, hostname or IP address."""
        if not term:
            raise InventoryError("Please provide an IP address, hostname or CTID to search for")
        needle = term.lower()
        return [
            record
            for record in self.load().containers
            if needle in str(record.ctid) or needle in record.hostname.lower() or needle in record.ip_address.lower()
        ]
