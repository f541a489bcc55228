from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

CSV_HEADER = [
    "CTID",
    "Hostname",
    "IP Address",
    "Status",
    "Memory (MB)",
    "CPU Cores",
    "Storage",
    "Tags",
    "Unprivileged",
    "Last Updated",
]


class ContainerRecord(BaseModel):
    """One LXC container as seen by `pct config` / `pct status`."""

    ctid: int
    hostname: str = "unknown"
    ip_address: str = Field("", description="Empty string when no address is known")
    status: str = "unknown"
    memory_mb: Optional[int] = None
    cpu_cores: Optional[int] = None
    storage: str = ""
    tags: str = ""
    unprivileged: bool = False
    last_updated: str = Field(..., description="UTC, e.g. 2026-01-01T00:00:00Z")

    @field_validator("ip_address", mode="before")
    @classmethod
    def _none_ip_is_empty(cls, value):
        return value or ""

    def csv_row(self) -> List[str]:
        return [
            str(self.ctid),
            self.hostname,
            self.ip_address,
            self.status,
            "" if self.memory_mb is None else str(self.memory_mb),
            "" if self.cpu_cores is None else str(self.cpu_cores),
            self.storage,
            self.tags,
            "1" if self.unprivileged else "0",
            # `2026-01-01 00:00:00` in CSV
            self.last_updated.replace("T", " ").rstrip("Z"),
        ]


class InventorySummary(BaseModel):
    running: int = 0
    stopped: int = 0


class InventorySnapshot(BaseModel):
    generated_at: str
    generated_by: str
    total_containers: int
    containers: List[ContainerRecord] = Field(default_factory=list)
    summary: InventorySummary = Field(default_factory=InventorySummary)
