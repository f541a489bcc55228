import shlex
from pathlib import Path
from typing import List, Optional

from core.errors import InstallError
from core.guest import ConnectionInfo, GuestExecutor
from installers.base import Installer

DOCKER_KEYRING = "/etc/apt/keyrings/docker.gpg"
DOCKER_PACKAGES = "docker-ce docker-ce-cli containerd.io docker-buildx-plugin docker-compose-plugin"


def install_docker_engine(executor: GuestExecutor, console) -> None:
    """Docker CE plus the compose plugin from download.docker.com (Debian)."""
    console.info("Installing Docker and dependencies...")
    executor.run(
        "DEBIAN_FRONTEND=noninteractive apt-get update "
        "&& apt-get install -y --no-install-recommends ca-certificates curl gnupg lsb-release"
    )
    codename = executor.run(
        "lsb_release -cs 2>/dev/null || (. /etc/os-release && echo $VERSION_CODENAME)",
        check=False,
    ).stdout.strip() or "bookworm"
    executor.run(
        "install -m 0755 -d /etc/apt/keyrings "
        f"&& curl -fsSL https://download.docker.com/linux/debian/gpg | gpg --dearmor --yes -o {DOCKER_KEYRING} "
        f"&& chmod a+r {DOCKER_KEYRING}"
    )
    executor.run(
        f'echo "deb [arch=$(dpkg --print-architecture) signed-by={DOCKER_KEYRING}] '
        f'https://download.docker.com/linux/debian {codename} stable" '
        "> /etc/apt/sources.list.d/docker.list"
    )
    executor.run(f"apt-get update && apt-get install -y {DOCKER_PACKAGES}")

    console.info("Starting Docker service...")
    executor.run("systemctl enable docker && systemctl start docker")
    if not executor.run("docker compose version", check=False).ok:
        raise InstallError("Docker Compose plugin is not available after installation")


class DockerInstaller(Installer):
    """
    Generic Docker workload: installs the engine and, when a compose file is
    given, pushes it into the guest and brings the project up.
    """

    name = "docker"
    title = "Docker"
    requires_container_runtime = True
    defaults = {"tags": "docker"}

    def __init__(
        self,
        console=None,
        compose_file: Optional[Path] = None,
        project_dir: str = "/opt/app",
    ) -> None:
        super().__init__(console)
        self.compose_file = Path(compose_file) if compose_file else None
        self.project_dir = project_dir

    def compose(self, connection: ConnectionInfo, args: str, check: bool = True):
        return connection.executor.run(
            f"cd {shlex.quote(self.project_dir)} && docker compose {args}", check=check
        )

    def install_into(self, connection: ConnectionInfo) -> None:
        install_docker_engine(connection.executor, self.console)
        if not self.compose_file:
            self.console.ok("Docker is installed; no compose project configured")
            return

        self.console.info(f"Deploying {self.compose_file.name} to {self.project_dir}...")
        connection.executor.write_file(
            f"{self.project_dir}/docker-compose.yml",
            self.compose_file.read_text(encoding="utf-8"),
        )
        self.compose(connection, "pull")
        self.compose(connection, "up -d")
        self.console.ok("Compose project started")

    def update_in(self, connection: ConnectionInfo) -> None:
        self.console.info(f"Updating containers in {self.project_dir}...")
        self.compose(connection, "pull")
        self.compose(connection, "up -d")
        self.console.ok("Update completed")

    def management_lines(self, connection: ConnectionInfo) -> List[str]:
        cd = f"cd {self.project_dir} &&"
        return [
            f"View services:  {cd} docker compose ps",
            f"View logs:      {cd} docker compose logs -f",
            f"Restart:        {cd} docker compose restart",
            f"Stop:           {cd} docker compose down",
        ]
