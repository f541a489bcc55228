from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SystemdUnit(BaseModel):
    """A `.service` unit rendered for an application running inside a guest."""

    name: str = Field(..., description="Unit name without the .service suffix")
    description: str
    exec_start: str
    documentation: Optional[str] = None
    user: Optional[str] = None
    group: Optional[str] = None
    working_directory: Optional[str] = None
    environment: Dict[str, str] = Field(default_factory=dict)
    service_type: str = "simple"
    restart: str = "always"
    restart_sec: int = 10
    requires_network: bool = True
    exec_reload: Optional[str] = None
    extra_unit: List[str] = Field(default_factory=list)
    hardening: List[str] = Field(
        default_factory=lambda: [
            "NoNewPrivileges=true",
            "PrivateTmp=yes",
            "ProtectSystem=strict",
            "ProtectHome=yes",
        ]
    )
    extra_service: List[str] = Field(default_factory=list)
    limit_nofile: Optional[int] = 65536
    wanted_by: str = "multi-user.target"

    @property
    def path(self) -> str:
        return f"/etc/systemd/system/{self.name}.service"

    def render(self) -> str:
        unit = ["[Unit]", f"Description={self.description}"]
        if self.documentation:
            unit.append(f"Documentation={self.documentation}")
        if self.requires_network:
            unit += ["After=network-online.target", "Wants=network-online.target"]
        unit += self.extra_unit

        service = ["[Service]", f"Type={self.service_type}"]
        if self.user:
            service.append(f"User={self.user}")
        if self.group:
            service.append(f"Group={self.group}")
        if self.working_directory:
            service.append(f"WorkingDirectory={self.working_directory}")
        for key, value in self.environment.items():
            service.append(f'Environment="{key}={value}"')
        service.append(f"ExecStart={self.exec_start}")
        if self.exec_reload:
            service.append(f"ExecReload={self.exec_reload}")
        service += [
            f"Restart={self.restart}",
            f"RestartSec={self.restart_sec}",
            "StandardOutput=journal",
            "StandardError=journal",
            f"SyslogIdentifier={self.name}",
        ]
        service += self.hardening
        service += self.extra_service
        if self.limit_nofile:
            service.append(f"LimitNOFILE={self.limit_nofile}")

        install = ["[Install]", f"WantedBy={self.wanted_by}"]
        return "\n".join(unit + [""] + service + [""] + install) + "\n"


def install_unit(executor, unit: SystemdUnit, start: bool = True) -> None:
    """Write the unit into the guest, reload systemd and enable it."""
    executor.write_file(unit.path, unit.render(), mode="644")
    command = f"systemctl daemon-reload && systemctl enable {unit.name}"
    if start:
        command += f" && systemctl start {unit.name}"
    executor.run(command)
