import httpx
import pytest

from core.errors import ConfigurationError, GuestCommandError, InstallError
from core.guest import CommandResult, ConnectionInfo
from installers.base import fetch_latest_release
from installers.docker import DockerInstaller
from installers.metabase import MetabaseInstaller, download_url
from installers.registry import available_installers, get_installer
from installers.supabase import SupabaseInstaller, set_env_command
from installers.vault import VaultInstaller, render_config
from schemas.provision_schema import InstanceKind
from tests.fakes import RecordingExecutor


def connect(executor, ip="192.168.1.50"):
    return ConnectionInfo(InstanceKind.LXC, 100, "app-lxc", ip, "secret", executor)


class TestRegistry:
    def test_known_installers(self, console):
        assert available_installers() == ["docker", "metabase", "supabase", "vault"]
        assert isinstance(get_installer("Metabase", console), MetabaseInstaller)

    def test_unknown_installer(self):
        with pytest.raises(ConfigurationError, match="Unknown application 'grafana'"):
            get_installer("grafana")

    def test_app_defaults(self, console):
        defaults = get_installer("supabase", console).app_defaults(InstanceKind.LXC)

        assert defaults["app"] == "Supabase"
        assert defaults["memory_mb"] == 4096


class TestReleaseLookup:
    def test_strips_v_prefix(self, mocker):
        response = httpx.Response(
            200,
            json={"tag_name": "v0.50.3"},
            request=httpx.Request("GET", "https://api.github.com/repos/metabase/metabase/releases/latest"),
        )
        mocker.patch("installers.base.httpx.get", return_value=response)

        assert fetch_latest_release("metabase/metabase") == "0.50.3"

    def test_network_error(self, mocker):
        mocker.patch("installers.base.httpx.get", side_effect=httpx.ConnectError("offline"))

        assert fetch_latest_release("metabase/metabase") is None


class TestMetabase:
    def test_install(self, mocker, console):
        mocker.patch("installers.metabase.fetch_latest_release", return_value="0.50.3")
        executor = RecordingExecutor()
        installer = MetabaseInstaller(console, java_heap="1g")

        installer.install_into(connect(executor))

        unit = executor.files["/etc/systemd/system/metabase.service"]
        assert 'Environment="MB_JAVA_HEAP=1g"' in unit
        assert any(download_url("0.50.3") in c for c in executor.commands)
        assert installer.access_lines(connect(executor))[0] == "Access Metabase at: http://192.168.1.50:3000"

    def test_install_falls_back_to_latest(self, mocker, console, output):
        mocker.patch("installers.metabase.fetch_latest_release", return_value=None)
        executor = RecordingExecutor()

        MetabaseInstaller(console).install_into(connect(executor))

        assert any("https://downloads.metabase.com/latest/metabase.jar" in c for c in executor.commands)
        assert "using 'latest'" in output.getvalue()

    def test_update_swaps_jar(self, mocker, console):
        mocker.patch("installers.metabase.fetch_latest_release", return_value="0.51.0")
        executor = RecordingExecutor({"version": CommandResult(0, "Metabase v0.50.3 (abc123)\n")})

        MetabaseInstaller(console).update_in(connect(executor))

        assert "systemctl stop metabase" in executor.commands
        assert any(download_url("0.51.0") in c for c in executor.commands)
        assert executor.commands[-1] == "systemctl start metabase"

    def test_update_when_current(self, mocker, console):
        mocker.patch("installers.metabase.fetch_latest_release", return_value="0.50.3")
        executor = RecordingExecutor({"version": CommandResult(0, "Metabase v0.50.3 (abc123)\n")})

        MetabaseInstaller(console).update_in(connect(executor))

        assert "systemctl stop metabase" not in executor.commands

    def test_failed_command_propagates(self, console):
        executor = RecordingExecutor({"apt-get": CommandResult(100, "", "E: Unable to locate package")})

        with pytest.raises(GuestCommandError, match="Unable to locate package"):
            MetabaseInstaller(console).install_into(connect(executor))


class TestVault:
    def test_config_uses_guest_address(self):
        config = render_config("10.0.0.8")

        assert 'api_addr = "http://10.0.0.8:8200"' in config
        assert 'cluster_addr = "http://10.0.0.8:8201"' in config
        assert 'path = "/opt/vault/data"' in config

    def test_install(self, console, output):
        executor = RecordingExecutor({"vault status": CommandResult(2, "Sealed             true\n")})

        VaultInstaller(console).install_into(connect(executor, ip="10.0.0.8"))

        assert "10.0.0.8:8200" in executor.files["/etc/vault.d/vault.hcl"]
        assert "Type=notify" in executor.files["/etc/systemd/system/vault.service"]
        assert "sealed" in output.getvalue()

    def test_service_not_running(self, console):
        executor = RecordingExecutor({"is-active": CommandResult(3)})

        with pytest.raises(InstallError, match="failed to start"):
            VaultInstaller(console).install_into(connect(executor))


class TestDocker:
    def test_engine_only(self, console):
        executor = RecordingExecutor()

        DockerInstaller(console).install_into(connect(executor))

        assert any("docker-compose-plugin" in c for c in executor.commands)
        assert not any(c.startswith("cd /opt/app") for c in executor.commands)

    def test_compose_project(self, console, tmp_path):
        compose = tmp_path / "docker-compose.yml"
        compose.write_text("services:\n  web:\n    image: nginx\n")
        executor = RecordingExecutor()

        DockerInstaller(console, compose_file=compose).install_into(connect(executor))

        assert executor.files["/opt/app/docker-compose.yml"] == compose.read_text()
        assert executor.commands[-2:] == ["cd /opt/app && docker compose pull", "cd /opt/app && docker compose up -d"]

    def test_missing_compose_plugin(self, console):
        executor = RecordingExecutor({"docker compose version": CommandResult(1)})

        with pytest.raises(InstallError, match="Compose"):
            DockerInstaller(console).install_into(connect(executor))


class TestSupabase:
    def test_env_command(self):
        command = set_env_command("/opt/supabase/.env", {"JWT_SECRET": "abc"})

        assert "grep -q '^JWT_SECRET=' /opt/supabase/.env" in command
        assert "s|^JWT_SECRET=.*|JWT_SECRET=abc|" in command

    def test_install(self, console):
        executor = RecordingExecutor()
        installer = SupabaseInstaller(console)

        installer.install_into(connect(executor, ip="10.0.0.9"))

        env_command = next(c for c in executor.commands if "SITE_URL" in c)
        assert "SITE_URL=http://10.0.0.9:3000" in env_command
        assert installer.secrets["POSTGRES_PASSWORD"] in env_command
        assert any("CREATE EXTENSION IF NOT EXISTS vector" in c for c in executor.commands)
        lines = installer.access_lines(connect(executor, ip="10.0.0.9"))
        assert "Studio UI:  http://10.0.0.9:3000" in lines
        assert f"PostgreSQL Password: {installer.secrets['POSTGRES_PASSWORD']}" in lines

    def test_update(self, console):
        executor = RecordingExecutor()

        SupabaseInstaller(console).update_in(connect(executor))

        assert executor.commands == [
            "cd /opt/supabase && docker compose pull",
            "cd /opt/supabase && docker compose up -d",
        ]
