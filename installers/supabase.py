import shlex
import time
from typing import Dict, List

from core.credentials import generate_secret
from core.guest import ConnectionInfo
from installers.docker import DockerInstaller, install_docker_engine

SUPABASE_DIR = "/opt/supabase"
SUPABASE_REPO = "https://github.com/supabase/supabase.git"


def set_env_command(path: str, values: Dict[str, str]) -> str:
    """
    Shell command replacing (or appending) KEY=value lines in a dotenv file.
    Values are expected to be URL/alphanumeric, `|` is used as sed delimiter.
    """
    commands = []
    for key, value in values.items():
        line = shlex.quote(f"{key}={value}")
        pattern = shlex.quote(f"s|^{key}=.*|{key}={value}|")
        quoted_path = shlex.quote(path)
        commands.append(
            f"if grep -q '^{key}=' {quoted_path}; then sed -i {pattern} {quoted_path}; "
            f"else echo {line} >> {quoted_path}; fi"
        )
    return " && ".join(commands)


class SupabaseInstaller(DockerInstaller):
    """Self-hosted Supabase from the upstream docker bundle."""

    name = "supabase"
    title = "Supabase"
    needs_address = True
    defaults = {
        "cores": 4,
        "memory_mb": 4096,
        "swap_mb": 1024,
        "disk_size": "32G",
        "tags": "database;backend;postgresql",
    }

    def __init__(self, console=None) -> None:
        super().__init__(console, project_dir=SUPABASE_DIR)
        self.secrets: Dict[str, str] = {}

    def environment(self, address: str) -> Dict[str, str]:
        if not self.secrets:
            self.secrets = {
                "POSTGRES_PASSWORD": generate_secret(24),
                "JWT_SECRET": generate_secret(40),
                "DASHBOARD_PASSWORD": generate_secret(20),
            }
        return {
            **self.secrets,
            "SITE_URL": f"http://{address}:3000",
            "API_EXTERNAL_URL": f"http://{address}:8000",
            "SUPABASE_PUBLIC_URL": f"http://{address}:8000",
        }

    def install_into(self, connection: ConnectionInfo) -> None:
        run = connection.executor.run
        install_docker_engine(connection.executor, self.console)

        self.console.info("Fetching Supabase docker bundle...")
        run(
            "apt-get install -y git && rm -rf /tmp/supabase-repo "
            f"&& git clone --depth 1 {SUPABASE_REPO} /tmp/supabase-repo"
        )
        run(
            f"mkdir -p {SUPABASE_DIR} && cp -rf /tmp/supabase-repo/docker/. {SUPABASE_DIR}/ "
            "&& rm -rf /tmp/supabase-repo"
        )

        self.console.info("Configuring Supabase environment...")
        env_path = f"{SUPABASE_DIR}/.env"
        run(f"cd {SUPABASE_DIR} && if [ -f .env.example ]; then cp .env.example .env; else touch .env; fi")
        run(set_env_command(env_path, self.environment(connection.address)))
        run(f"chmod 600 {env_path}")

        self.console.info("Pulling Docker images (this may take a while)...")
        self.compose(connection, "pull")
        self.console.info("Starting Supabase services...")
        self.compose(connection, "up -d")

        self.console.info("Waiting for services to initialize...")
        time.sleep(15)
        vector = self.compose(
            connection,
            "exec -T db psql -U postgres -c 'CREATE EXTENSION IF NOT EXISTS vector;'",
            check=False,
        )
        if vector.ok:
            self.console.ok("pgvector extension enabled")
        else:
            self.console.warning("Could not enable pgvector yet; run CREATE EXTENSION vector later")
        self.console.ok("Supabase installation completed!")

    def access_lines(self, connection: ConnectionInfo) -> List[str]:
        address = connection.address
        lines = [
            f"Studio UI:  http://{address}:3000",
            f"API:        http://{address}:8000",
            f"Database:   {address}:5432",
            f"Credentials saved in: {SUPABASE_DIR}/.env",
        ]
        if self.secrets:
            lines.append(f"PostgreSQL Password: {self.secrets['POSTGRES_PASSWORD']}")
            lines.append(f"Dashboard Password:  {self.secrets['DASHBOARD_PASSWORD']}")
        return lines
