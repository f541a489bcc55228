import re
import time
from typing import List

from core.errors import InstallError
from core.guest import ConnectionInfo
from core.systemd import SystemdUnit, install_unit
from installers.base import Installer

VAULT_CONFIG = "/etc/vault.d/vault.hcl"
VAULT_DATA = "/opt/vault/data"
HASHICORP_KEYRING = "/usr/share/keyrings/hashicorp-archive-keyring.gpg"


def render_config(address: str) -> str:
    return f"""ui = true
disable_mlock = true

storage "file" {{
  path = "{VAULT_DATA}"
}}

listener "tcp" {{
  address     = "0.0.0.0:8200"
  tls_disable = 1
}}

api_addr = "http://{address}:8200"
cluster_addr = "http://{address}:8201"
"""


class VaultInstaller(Installer):
    """HashiCorp Vault from the official apt repository, file storage backend."""

    name = "vault"
    title = "Vault"
    needs_address = True
    defaults = {
        "cores": 2,
        "memory_mb": 2048,
        "disk_size": "10G",
        "tags": "security;secrets-management",
    }

    def unit(self) -> SystemdUnit:
        return SystemdUnit(
            name="vault",
            description="HashiCorp Vault - A tool for managing secrets",
            documentation="https://www.vaultproject.io/docs/",
            user="vault",
            group="vault",
            service_type="notify",
            exec_start=f"/usr/bin/vault server -config={VAULT_CONFIG}",
            exec_reload="/bin/kill --signal HUP $MAINPID",
            restart="on-failure",
            restart_sec=5,
            extra_unit=[
                f"ConditionFileNotEmpty={VAULT_CONFIG}",
                "StartLimitIntervalSec=60",
                "StartLimitBurst=3",
            ],
            hardening=[
                "ProtectSystem=full",
                "ProtectHome=read-only",
                "PrivateTmp=yes",
                "PrivateDevices=yes",
                "SecureBits=keep-caps",
                "AmbientCapabilities=CAP_IPC_LOCK",
                "CapabilityBoundingSet=CAP_SYSLOG CAP_IPC_LOCK",
                "NoNewPrivileges=yes",
            ],
            extra_service=[
                "KillMode=process",
                "TimeoutStopSec=30",
                "LimitMEMLOCK=infinity",
            ],
        )

    def install_into(self, connection: ConnectionInfo) -> None:
        run = connection.executor.run

        self.console.info("Installing dependencies")
        run("apt-get update && apt-get install -y curl gnupg lsb-release ca-certificates")

        self.console.info("Adding HashiCorp repository")
        run(
            "curl -fsSL https://apt.releases.hashicorp.com/gpg "
            f"| gpg --dearmor --yes -o {HASHICORP_KEYRING}"
        )
        run(
            f'echo "deb [signed-by={HASHICORP_KEYRING}] https://apt.releases.hashicorp.com '
            '$(lsb_release -cs) main" > /etc/apt/sources.list.d/hashicorp.list'
        )

        self.console.info("Installing Vault")
        run("apt-get update && apt-get install -y vault")

        self.console.info("Creating Vault user and directories")
        run(f"mkdir -p {VAULT_DATA} /etc/vault.d")
        run(
            "if ! id -u vault >/dev/null 2>&1; then "
            "useradd --system --home /etc/vault.d --shell /bin/false vault; fi"
        )

        self.console.info("Configuring Vault")
        connection.executor.write_file(VAULT_CONFIG, render_config(connection.address), mode="640")
        run(f"chown -R vault:vault /opt/vault /etc/vault.d && chmod 700 {VAULT_DATA}")

        self.console.info("Creating systemd service")
        install_unit(connection.executor, self.unit())

        self.console.info("Waiting for Vault to start")
        time.sleep(5)
        if not run("systemctl is-active --quiet vault", check=False).ok:
            status = run("systemctl status vault --no-pager -l", check=False)
            raise InstallError(f"Vault service failed to start\n{status.stdout.strip()}")
        self.console.ok("Vault service is running")

        status = run("VAULT_ADDR=http://127.0.0.1:8200 vault status 2>&1", check=False)
        if re.search(r"Sealed\s+true", status.stdout):
            self.console.warning("Vault is sealed and needs initialization")

    def update_in(self, connection: ConnectionInfo) -> None:
        self.console.info("Updating Vault")
        connection.executor.run(
            "apt-get update && apt-get install -y --only-upgrade vault && systemctl restart vault"
        )
        version = connection.executor.run("vault version 2>/dev/null | head -n1", check=False)
        self.console.ok(f"Vault updated: {version.stdout.strip() or 'unknown version'}")

    def access_lines(self, connection: ConnectionInfo) -> List[str]:
        address = connection.address
        return [
            f"Vault UI:  http://{address}:8200/ui",
            f"Vault API: http://{address}:8200",
            "Next steps:",
            "  1. Initialize Vault: vault operator init",
            "  2. Save the unseal keys and root token securely",
            "  3. Unseal Vault: vault operator unseal <key> (repeat 3 times)",
            "  4. Login: vault login <root-token>",
            "TLS is disabled (tls_disable = 1); enable TLS before production use",
        ]

    def management_lines(self, connection: ConnectionInfo) -> List[str]:
        return [
            "Status:  vault status",
            "Restart: systemctl restart vault",
            "Logs:    journalctl -u vault -f",
        ]
