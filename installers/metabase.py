import re
import shlex
import time
from typing import List, Optional

from core.guest import ConnectionInfo
from core.systemd import SystemdUnit, install_unit
from installers.base import Installer, fetch_latest_release

METABASE_HOME = "/opt/metabase"
METABASE_JAR = f"{METABASE_HOME}/metabase.jar"
METABASE_PORT = 3000


def download_url(version: str) -> str:
    if version == "latest":
        return "https://downloads.metabase.com/latest/metabase.jar"
    return f"https://downloads.metabase.com/v{version}/metabase.jar"


class MetabaseInstaller(Installer):
    """Metabase as a plain JVM service under systemd."""

    name = "metabase"
    title = "Metabase"
    defaults = {
        "cores": 2,
        "memory_mb": 2048,
        "tags": "analytics;business-intelligence",
    }

    def __init__(self, console=None, java_heap: str = "512m") -> None:
        super().__init__(console)
        self.java_heap = java_heap
        self.version: Optional[str] = None

    def _latest_version(self) -> str:
        version = fetch_latest_release("metabase/metabase")
        if not version:
            self.console.warning("Could not determine latest version, using 'latest'")
            return "latest"
        return version

    def _download_jar(self, connection: ConnectionInfo, version: str) -> None:
        url = download_url(version)
        connection.executor.run(
            f"curl -fL -o {METABASE_JAR} {shlex.quote(url)} "
            f"&& chown metabase:metabase {METABASE_JAR} && chmod 644 {METABASE_JAR}"
        )

    def unit(self) -> SystemdUnit:
        return SystemdUnit(
            name="metabase",
            description="Metabase Server",
            documentation="https://www.metabase.com/docs/latest/",
            user="metabase",
            group="metabase",
            working_directory=METABASE_HOME,
            environment={"MB_JAVA_HEAP": self.java_heap},
            exec_start=f"/usr/bin/java -Xmx{self.java_heap} -jar {METABASE_JAR}",
            extra_service=[f"ReadWritePaths={METABASE_HOME}/data"],
        )

    def install_into(self, connection: ConnectionInfo) -> None:
        run = connection.executor.run

        self.console.info("Installing Metabase dependencies...")
        run(
            "DEBIAN_FRONTEND=noninteractive apt-get update "
            "&& apt-get install -y --no-install-recommends curl openjdk-17-jre-headless "
            "&& apt-get clean && rm -rf /var/lib/apt/lists/*"
        )

        self.console.info("Creating Metabase user...")
        run(
            "if ! id -u metabase >/dev/null 2>&1; then "
            f"useradd -r -s /bin/false -d {METABASE_HOME} -m metabase; fi"
        )
        run(f"mkdir -p {METABASE_HOME}/data && chown -R metabase:metabase {METABASE_HOME}")

        self.version = self._latest_version()
        self.console.info(f"Downloading Metabase {self.version}...")
        self._download_jar(connection, self.version)

        self.console.info("Creating systemd service...")
        install_unit(connection.executor, self.unit())

        self.console.info("Waiting for Metabase to start...")
        time.sleep(5)
        if run("systemctl is-active --quiet metabase", check=False).ok:
            self.console.ok("Metabase service is running")
        else:
            self.console.warning(
                "Metabase service may still be starting. Check logs with: journalctl -u metabase -f"
            )
        self.console.ok("Metabase installation completed!")

    def installed_version(self, connection: ConnectionInfo) -> Optional[str]:
        result = connection.executor.run(
            f"java -jar {METABASE_JAR} version 2>/dev/null | head -n1", check=False
        )
        match = re.search(r"v(\d+\.\d+\.\d+(?:\.\d+)?)", result.stdout)
        return match.group(1) if match else None

    def update_in(self, connection: ConnectionInfo) -> None:
        self.console.info("Checking for Metabase updates...")
        current = self.installed_version(connection) or "unknown"
        latest = fetch_latest_release("metabase/metabase")
        if not latest:
            self.console.warning("Could not determine latest version, leaving Metabase as is")
            return
        if latest == current:
            self.console.ok(f"Already on latest version ({current})")
            return

        self.console.info(f"Updating Metabase from {current} to {latest}")
        run = connection.executor.run
        run("systemctl stop metabase")
        self._download_jar(connection, latest)
        run("systemctl start metabase")
        self.version = latest
        self.console.ok(f"Updated to version {latest}")

    def access_lines(self, connection: ConnectionInfo) -> List[str]:
        return [
            f"Access Metabase at: http://{connection.address}:{METABASE_PORT}",
            f"Version: {self.version or 'unknown'}  JVM heap: {self.java_heap}",
            "Default credentials: Set up on first login",
        ]

    def management_lines(self, connection: ConnectionInfo) -> List[str]:
        return [
            "Status:  systemctl status metabase",
            "Restart: systemctl restart metabase",
            "Logs:    journalctl -u metabase -f",
        ]
